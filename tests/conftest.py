"""Shared test fixtures — reduces boilerplate across test modules.

Provides:
- ``set_test_config`` — autouse fixture that patches common settings
- ``git_repo`` — a throwaway origin + clone pair for git-client tests
- ``test_client`` — pre-built TestClient against the app
- ``make_response`` — helper to render a model response in block format
"""

import shutil
import subprocess
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.main import app


# ---------------------------------------------------------------------------
# Marker registration
# ---------------------------------------------------------------------------


def pytest_configure(config):
    """Register custom markers.

    Tests that shell out to real external tools (git, npm) are decorated
    with ``@pytest.mark.integration`` and skip themselves when the tool is
    missing.  Run with ``-m 'not integration'`` to skip them outright.
    """
    config.addinivalue_line(
        "markers",
        "integration: tests requiring external tools (git, npm)",
    )


# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "app.config.settings.OPENAI_API_KEY": "test-key",
    "app.config.settings.ANTHROPIC_API_KEY": "test-key",
    "app.config.settings.LLM_PROVIDER": "openai",
    "app.config.settings.LLM_MODEL": "test-model",
    "app.config.settings.LLM_TEMPERATURE": 0.1,
    "app.config.settings.MAX_RETRIES": 3,
    "app.config.settings.INSTALL_DEPENDENCIES": False,
    "app.config.settings.ENABLE_TEST_SYNTHESIS": False,
    "app.config.settings.TASK_TIMEOUT_SECONDS": 0,
    "app.config.settings.PUSH_ON_EXHAUSTION": True,
    "app.config.settings.FRONTEND_URL": "http://localhost:5173",
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch, tmp_path):
    """Patch common application settings for a safe test environment.

    This is ``autouse=True`` so every test automatically gets a
    deterministic, non-production configuration and a private workspace.
    """
    for target, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(target, value)
    monkeypatch.setattr("app.config.settings.WORKSPACE_ROOT", str(tmp_path / "workspaces"))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_response(files: dict[str, str], preamble: str = "") -> str:
    """Render *files* the way the model is asked to answer."""
    parts = [preamble] if preamble else []
    for path, content in files.items():
        parts.append(f"- Path: {path}\n- Content:\n{content}\n")
    return "\n".join(parts)


def _git(args: list[str], cwd: Path) -> None:
    subprocess.run(["git", *args], cwd=str(cwd), check=True, capture_output=True)


@pytest.fixture
def git_repo(tmp_path) -> dict[str, Path]:
    """A bare ``origin`` with one commit on *main*, plus an empty clone target.

    Returns ``{"origin": <bare repo>, "dest": <path for the clone>}``.
    """
    if shutil.which("git") is None:
        pytest.skip("git not installed")

    seed = tmp_path / "seed"
    seed.mkdir()
    _git(["init", "-b", "main"], seed)
    _git(["config", "user.name", "Seed"], seed)
    _git(["config", "user.email", "seed@example.com"], seed)
    (seed / "README.md").write_text("# seed\n")
    _git(["add", "-A"], seed)
    _git(["commit", "-m", "initial"], seed)

    origin = tmp_path / "origin.git"
    _git(["clone", "--bare", str(seed), str(origin)], tmp_path)
    return {"origin": origin, "dest": tmp_path / "work" / "clone"}


@pytest.fixture
def test_client() -> TestClient:
    """A fresh ``TestClient`` instance wrapping the FastAPI app."""
    return TestClient(app)

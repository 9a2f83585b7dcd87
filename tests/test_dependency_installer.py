"""Tests for app/services/dependency_installer.py -- best-effort npm install."""

from unittest.mock import AsyncMock, patch

import pytest

from app.services.dependency_installer import install_dependencies
from smith_core.runner import INSTALL_PREFIXES, RunResult


def _result(exit_code: int, command: str) -> RunResult:
    return RunResult(exit_code=exit_code, stderr="npm ERR!" if exit_code else "", command=command)


@pytest.fixture
def project(tmp_path):
    (tmp_path / "package.json").write_text('{"name": "svc"}')
    return tmp_path


@pytest.mark.asyncio
async def test_npm_ci_first(project):
    mock_run = AsyncMock(return_value=_result(0, "npm ci --ignore-scripts"))
    with patch("app.services.dependency_installer.run", mock_run):
        assert await install_dependencies(project) is True

    mock_run.assert_awaited_once()
    assert mock_run.await_args.args[0] == "npm ci --ignore-scripts"
    assert mock_run.await_args.kwargs["allowed_prefixes"] == INSTALL_PREFIXES


@pytest.mark.asyncio
async def test_falls_back_to_npm_install(project):
    mock_run = AsyncMock(side_effect=[
        _result(1, "npm ci --ignore-scripts"),
        _result(0, "npm install"),
    ])
    with patch("app.services.dependency_installer.run", mock_run):
        assert await install_dependencies(project) is True
    assert [c.args[0] for c in mock_run.await_args_list] == ["npm ci --ignore-scripts", "npm install"]


@pytest.mark.asyncio
async def test_both_fail_is_not_fatal(project):
    mock_run = AsyncMock(side_effect=[_result(1, "npm ci"), _result(1, "npm install")])
    with patch("app.services.dependency_installer.run", mock_run):
        assert await install_dependencies(project) is False


@pytest.mark.asyncio
async def test_no_manifest_skips(tmp_path):
    mock_run = AsyncMock()
    with patch("app.services.dependency_installer.run", mock_run):
        assert await install_dependencies(tmp_path) is False
    mock_run.assert_not_awaited()

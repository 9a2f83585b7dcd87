"""Build verifier — pluggable verification stages run after each attempt.

A stage takes the working directory plus the paths written in the current
attempt and returns a ``BuildOutcome``.  Stages never raise for a failed
build or a failing test suite; failure is a normal, representable outcome
that the retry controller feeds back into the next prompt.

Stages
------
``BuildStage``
    Runs the project's build command (``npm run build`` by default).
``TestSynthesisStage``
    Writes a minimal existence-check test per changed source file and runs
    the test suite.  Failures are prefixed with ``TEST_FAILURE_PREFIX``.
``InstallStage``
    Reinstalls dependencies when the manifest changed.  Best effort: it
    always reports success.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable, Protocol

from smith_core.applier import MANIFEST_FILES
from smith_core.contracts import BuildOutcome
from smith_core.runner import DEFAULT_TIMEOUT_S, RunResult, run

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_BUILD_COMMAND = "npm run build"
DEFAULT_TEST_COMMAND = "npm test -- --ci --runInBand"
TEST_FAILURE_PREFIX = "Test failed"

TESTABLE_EXTENSIONS: frozenset[str] = frozenset({".js", ".jsx", ".ts", ".tsx"})
TEST_DIR = "__tests__"

_TEST_NAME_RE = re.compile(r"\.(test|spec)\.[jt]sx?$")
_NON_IDENT_RE = re.compile(r"[^A-Za-z0-9_$]")


# ---------------------------------------------------------------------------
# Stage protocol
# ---------------------------------------------------------------------------


class VerificationStage(Protocol):
    """A step run after changes are applied."""

    name: str

    async def verify(self, working_dir: str, changed_paths: list[str]) -> BuildOutcome:
        ...


def _failure_text(result: RunResult) -> str:
    output = result.combined_output
    if output:
        return output
    return f"Command '{result.command}' exited with code {result.exit_code}"


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


class BuildStage:
    """Run the project's build command and capture its failure output."""

    name = "build"

    def __init__(
        self,
        command: str = DEFAULT_BUILD_COMMAND,
        *,
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ) -> None:
        self.command = command
        self.timeout_s = timeout_s

    async def verify(self, working_dir: str, changed_paths: list[str]) -> BuildOutcome:
        logger.info("Building project in %s (%s)", working_dir, self.command)
        result = await run(self.command, cwd=working_dir, timeout_s=self.timeout_s)
        if result.ok:
            logger.info("Build succeeded in %dms", result.duration_ms)
            return BuildOutcome.ok()
        logger.warning("Build failed (exit %d) in %dms", result.exit_code, result.duration_ms)
        return BuildOutcome.failed(_failure_text(result))


async def build(working_dir: str, command: str = DEFAULT_BUILD_COMMAND) -> BuildOutcome:
    """Build *working_dir* once; shorthand for ``BuildStage(command)``."""
    return await BuildStage(command).verify(working_dir, [])


# ---------------------------------------------------------------------------
# Test synthesis
# ---------------------------------------------------------------------------


def is_testable(rel_path: str) -> bool:
    """True for JS/TS source files that are not manifests or tests already."""
    posix = PurePosixPath(rel_path.replace("\\", "/"))
    if posix.as_posix() in MANIFEST_FILES:
        return False
    if posix.suffix not in TESTABLE_EXTENSIONS:
        return False
    if TEST_DIR in posix.parts or _TEST_NAME_RE.search(posix.name):
        return False
    return True


def synthesised_test_path(rel_path: str) -> str:
    """``src/health.ts`` → ``__tests__/src/health.test.ts``."""
    posix = PurePosixPath(rel_path.replace("\\", "/"))
    return (PurePosixPath(TEST_DIR) / posix.with_name(f"{posix.stem}.test{posix.suffix}")).as_posix()


def render_existence_test(rel_path: str) -> str:
    """Render a jest test asserting the module at *rel_path* loads."""
    posix = PurePosixPath(rel_path.replace("\\", "/"))
    test_rel = PurePosixPath(synthesised_test_path(rel_path))
    import_path = os.path.relpath(
        posix.with_suffix("").as_posix(), test_rel.parent.as_posix(),
    ).replace("\\", "/")
    if not import_path.startswith("."):
        import_path = f"./{import_path}"
    ident = _NON_IDENT_RE.sub("_", posix.stem) or "subject"
    if ident[0].isdigit():
        ident = f"_{ident}"

    return (
        f"import * as {ident} from '{import_path}';\n"
        f"\n"
        f"describe('{posix.as_posix()}', () => {{\n"
        f"  it('should be defined', () => {{\n"
        f"    expect({ident}).toBeDefined();\n"
        f"  }});\n"
        f"}});\n"
    )


def generate_tests(working_dir: str | Path, changed_paths: list[str]) -> list[str]:
    """Write one existence-check test per testable changed file.

    Returns the relative paths of the test files written.
    """
    written: list[str] = []
    root = Path(working_dir)
    for rel_path in dict.fromkeys(changed_paths):
        if not is_testable(rel_path):
            continue
        test_rel = synthesised_test_path(rel_path)
        target = root / test_rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(render_existence_test(rel_path), encoding="utf-8")
        logger.info("Test file created: %s", test_rel)
        written.append(test_rel)
    return written


class TestSynthesisStage:
    """Synthesise existence-check tests for changed files and run the suite."""

    __test__ = False  # not a pytest test class

    name = "test"

    def __init__(
        self,
        test_command: str = DEFAULT_TEST_COMMAND,
        *,
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ) -> None:
        self.test_command = test_command
        self.timeout_s = timeout_s

    async def verify(self, working_dir: str, changed_paths: list[str]) -> BuildOutcome:
        written = await asyncio.to_thread(generate_tests, working_dir, changed_paths)
        logger.info("Running tests (%d synthesised) in %s", len(written), working_dir)
        result = await run(
            self.test_command,
            cwd=working_dir,
            timeout_s=self.timeout_s,
            env={"CI": "true"},
        )
        if result.ok:
            logger.info("Tests passed in %dms", result.duration_ms)
            return BuildOutcome.ok(kind="test")
        logger.warning("Tests failed (exit %d)", result.exit_code)
        return BuildOutcome.failed(
            f"{TEST_FAILURE_PREFIX}: {_failure_text(result)}", kind="test",
        )


# ---------------------------------------------------------------------------
# Dependency installation
# ---------------------------------------------------------------------------


Installer = Callable[[str], Awaitable[None]]


class InstallStage:
    """Reinstall dependencies when this attempt rewrote a manifest."""

    name = "install"

    def __init__(
        self,
        installer: Installer,
        *,
        manifest_files: frozenset[str] = MANIFEST_FILES,
    ) -> None:
        self.installer = installer
        self.manifest_files = manifest_files

    async def verify(self, working_dir: str, changed_paths: list[str]) -> BuildOutcome:
        if not any(p.replace("\\", "/") in self.manifest_files for p in changed_paths):
            return BuildOutcome.ok(kind="install")
        logger.info("Manifest changed; reinstalling dependencies in %s", working_dir)
        await self.installer(working_dir)
        return BuildOutcome.ok(kind="install")


__all__ = [
    "DEFAULT_BUILD_COMMAND",
    "DEFAULT_TEST_COMMAND",
    "TEST_FAILURE_PREFIX",
    "BuildStage",
    "InstallStage",
    "Installer",
    "TestSynthesisStage",
    "VerificationStage",
    "build",
    "generate_tests",
    "is_testable",
    "render_existence_test",
    "synthesised_test_path",
]

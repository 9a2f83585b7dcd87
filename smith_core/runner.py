"""Command runner — structured subprocess execution with safety controls.

Provides ``run()`` for executing build, test and install commands inside a
working directory and returning structured ``RunResult`` models.  Command
validation, environment isolation, timeout management and output
truncation are all handled transparently.

A non-zero exit code is a normal result, never an exception.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
import time

from pydantic import BaseModel, ConfigDict, Field

from smith_core.errors import SandboxViolation

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_STDOUT_BYTES: int = 50_000  # 50 KB
MAX_STDERR_BYTES: int = 20_000  # 20 KB
DEFAULT_TIMEOUT_S: int = 600

INJECTION_CHARS: frozenset[str] = frozenset({
    ";", "|", "&", "`", "$", "(", ")", "{", "}",
})

BLOCKED_COMMANDS: frozenset[str] = frozenset({
    "rm", "del", "rmdir", "curl", "wget", "ssh", "scp",
    "git push", "git remote", "shutdown", "reboot",
    "format", "mkfs", "dd ", "chmod", "chown",
})

BUILD_PREFIXES: tuple[str, ...] = (
    "npm run ", "npx ", "yarn ", "pnpm ",
    "tsc", "make", "python -m ", "python3 -m ",
)

TEST_PREFIXES: tuple[str, ...] = (
    "npm test", "npm run test", "npx jest", "npx vitest",
    "pytest", "python -m pytest", "python3 -m pytest",
)

INSTALL_PREFIXES: tuple[str, ...] = (
    "npm ci", "npm install", "yarn install", "pnpm install",
    "pip install", "pip3 install",
)

ALL_ALLOWED_PREFIXES: tuple[str, ...] = BUILD_PREFIXES + TEST_PREFIXES + INSTALL_PREFIXES

# Env vars safe to propagate (no secrets).
_SAFE_ENV_KEYS: tuple[str, ...] = (
    "PATH", "SYSTEMROOT", "TEMP", "TMP", "TMPDIR", "LANG",
    "HOME", "USERPROFILE", "VIRTUAL_ENV",
    "NVM_DIR", "NODE_PATH", "npm_config_cache",
)


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class RunResult(BaseModel):
    """Structured result of a subprocess invocation."""

    model_config = ConfigDict(frozen=True)

    exit_code: int = Field(..., description="Process exit code (-1 if crashed or killed)")
    stdout: str = Field(default="", description="Captured stdout (may be truncated)")
    stderr: str = Field(default="", description="Captured stderr (may be truncated)")
    duration_ms: int = Field(default=0, ge=0, description="Wall-clock duration in ms")
    truncated: bool = Field(default=False, description="True if stdout or stderr was truncated")
    killed: bool = Field(default=False, description="True if the process was killed due to timeout")
    command: str = Field(..., description="The command that was executed")

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.killed

    @property
    def combined_output(self) -> str:
        """stdout followed by stderr, blank parts dropped."""
        parts = [p.strip() for p in (self.stdout, self.stderr) if p and p.strip()]
        return "\n".join(parts)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def validate_command(
    command: str,
    allowed_prefixes: tuple[str, ...] | None = None,
) -> str | None:
    """Check *command* against safety rules.

    Returns ``None`` when the command is acceptable, or an error-message
    string explaining why it was rejected.
    """
    if not command or not command.strip():
        return "Error: Command is empty"

    cmd = command.strip()

    for ch in cmd:
        if ch in INJECTION_CHARS:
            return f"Error: Command contains disallowed character '{ch}'"

    cmd_lower = cmd.lower()
    for blocked in BLOCKED_COMMANDS:
        if cmd_lower.startswith(blocked):
            return f"Error: Command '{blocked}' is not allowed"

    prefixes = allowed_prefixes if allowed_prefixes is not None else ALL_ALLOWED_PREFIXES
    if not any(cmd_lower.startswith(p) for p in prefixes):
        return (
            f"Error: Command not in allowlist. "
            f"Allowed prefixes: {', '.join(prefixes)}"
        )

    return None


def _build_env(extra: dict[str, str] | None = None) -> dict[str, str]:
    """Build a restricted environment dict for subprocess execution.

    Only propagates a small set of non-secret variables from the host
    environment, plus any caller-supplied *extra* vars.
    """
    env: dict[str, str] = {}
    for key in _SAFE_ENV_KEYS:
        val = os.environ.get(key)
        if val:
            env[key] = val
    if extra:
        env.update(extra)
    return env


def _truncate(text: str, max_bytes: int) -> tuple[str, bool]:
    """Truncate *text* to at most *max_bytes* characters.

    Keeps the *tail*: compilers and test runners print the decisive error
    last.
    """
    if len(text) <= max_bytes:
        return text, False
    return (
        f"[... truncated {len(text) - max_bytes} chars ...]\n" + text[-max_bytes:],
        True,
    )


def _decode(partial: bytes | str | None) -> str:
    if partial is None:
        return ""
    if isinstance(partial, bytes):
        return partial.decode("utf-8", errors="replace")
    return partial


# ---------------------------------------------------------------------------
# Core runner
# ---------------------------------------------------------------------------


async def run(
    command: str,
    *,
    cwd: str | None = None,
    timeout_s: int = DEFAULT_TIMEOUT_S,
    env: dict[str, str] | None = None,
    allowed_prefixes: tuple[str, ...] | None = None,
) -> RunResult:
    """Execute *command* in a subprocess and return a ``RunResult``.

    Parameters
    ----------
    command:
        Shell command string.  Must pass ``validate_command``.
    cwd:
        Working directory for the subprocess.  ``None`` → inherit.
    timeout_s:
        Maximum wall-clock seconds before the process is killed.
    env:
        Extra environment variables merged on top of the safe base set.
    allowed_prefixes:
        Override the default ``ALL_ALLOWED_PREFIXES`` for validation.

    Raises
    ------
    SandboxViolation
        When the command fails validation (injection, blocked, not in
        allowlist).
    """
    error = validate_command(command, allowed_prefixes)
    if error:
        raise SandboxViolation(command, root=cwd, reason=error)

    merged_env = _build_env(env)
    start = time.perf_counter()

    def _sync() -> tuple[int, str, str, bool]:
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                cwd=cwd,
                env=merged_env,
                shell=True,
                timeout=timeout_s,
            )
            return result.returncode, result.stdout or "", result.stderr or "", False
        except subprocess.TimeoutExpired as exc:
            return -1, _decode(exc.stdout), _decode(exc.stderr), True

    try:
        exit_code, raw_out, raw_err, was_killed = await asyncio.to_thread(_sync)
    except OSError as exc:
        elapsed = int((time.perf_counter() - start) * 1000)
        return RunResult(
            exit_code=-1,
            stderr=f"Error: {exc}",
            duration_ms=elapsed,
            command=command,
        )

    elapsed = int((time.perf_counter() - start) * 1000)

    stdout, trunc_out = _truncate(raw_out, MAX_STDOUT_BYTES)
    stderr, trunc_err = _truncate(raw_err, MAX_STDERR_BYTES)
    if was_killed:
        stderr = (stderr + f"\nProcess killed after {timeout_s}s timeout").lstrip("\n")

    return RunResult(
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        duration_ms=elapsed,
        truncated=trunc_out or trunc_err,
        killed=was_killed,
        command=command,
    )


__all__ = [
    "ALL_ALLOWED_PREFIXES",
    "BUILD_PREFIXES",
    "INSTALL_PREFIXES",
    "RunResult",
    "TEST_PREFIXES",
    "run",
    "validate_command",
]

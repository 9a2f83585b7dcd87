"""Git client -- thin wrapper around subprocess for git operations.

Handles clone, pull, branch, commit, push for task working copies.  No
business logic, no HTTP framework imports.  Every failing command raises
``RuntimeError`` carrying git's stderr, except default-branch detection,
which raises ``DefaultBranchError``.
"""

import asyncio
import logging
import os
import subprocess
from pathlib import Path

from smith_core.errors import DefaultBranchError

logger = logging.getLogger(__name__)

DEFAULT_BRANCH_CANDIDATES = ("main", "master")


async def _run_git(args: list[str], cwd: str | Path, env: dict | None = None) -> str:
    """Run a git command and return stdout. Raises on non-zero exit.

    Uses subprocess.run in a thread to avoid asyncio event-loop limitations
    on Windows (ProactorEventLoop requirement for create_subprocess_exec).
    """
    merged_env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", **(env or {})}

    def _sync() -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            env=merged_env,
        )

    result = await asyncio.to_thread(_sync)
    out = (result.stdout or "").strip()
    err = (result.stderr or "").strip()

    if result.returncode != 0:
        logger.error("git %s failed (rc=%d): %s", " ".join(args), result.returncode, err)
        raise RuntimeError(f"git {args[0]} failed: {err}")

    return out


async def clone_repo(clone_url: str, dest: str | Path) -> str:
    """Clone a git repository to dest. Returns the dest path."""
    parent = Path(dest).parent
    parent.mkdir(parents=True, exist_ok=True)
    await _run_git(["clone", clone_url, str(dest)], cwd=str(parent))
    return str(dest)


async def list_remote_branches(repo_path: str | Path) -> list[str]:
    """Return remote-tracking branch names (``origin/main`` style)."""
    raw = await _run_git(["branch", "-r"], cwd=repo_path)
    branches = []
    for line in raw.splitlines():
        name = line.strip()
        # Skip symbolic refs such as "origin/HEAD -> origin/main"
        if not name or "->" in name:
            continue
        branches.append(name)
    return branches


async def detect_default_branch(repo_path: str | Path) -> str:
    """Return ``main`` or ``master``, whichever the remote has (main first).

    Raises ``DefaultBranchError`` when neither exists.
    """
    remote_branches = await list_remote_branches(repo_path)
    for candidate in DEFAULT_BRANCH_CANDIDATES:
        if any(b.endswith(f"/{candidate}") for b in remote_branches):
            logger.info("Default branch for %s is '%s'", repo_path, candidate)
            return candidate
    raise DefaultBranchError(str(repo_path), remote_branches)


async def checkout_branch(repo_path: str | Path, branch_name: str) -> None:
    """Checkout an existing branch."""
    await _run_git(["checkout", branch_name], cwd=repo_path)


async def pull(
    repo_path: str | Path,
    *,
    remote: str = "origin",
    branch: str = "main",
) -> None:
    """Pull *branch* from *remote* into the current branch."""
    await _run_git(["pull", remote, branch], cwd=repo_path)


async def ensure_working_copy(clone_url: str, dest: str | Path) -> str:
    """Make *dest* an up-to-date checkout of the remote default branch.

    Clones when *dest* does not exist.  Otherwise detects the default
    branch, checks it out and pulls.  Returns the default branch name.
    """
    path = Path(dest)
    if not path.exists():
        logger.info("Cloning %s into %s", clone_url, path)
        await clone_repo(clone_url, path)
        return await detect_default_branch(path)

    logger.info("Working copy exists at %s, pulling latest changes", path)
    default_branch = await detect_default_branch(path)
    await checkout_branch(path, default_branch)
    await pull(path, branch=default_branch)
    return default_branch


async def create_branch(repo_path: str | Path, branch_name: str) -> None:
    """Create (or reset) *branch_name* at HEAD and check it out."""
    await _run_git(["checkout", "-B", branch_name], cwd=repo_path)


async def commit(
    repo_path: str | Path,
    message: str,
    *,
    author_name: str,
    author_email: str,
) -> str | None:
    """Stage everything and commit. Returns commit hash or None if nothing to commit.

    The author identity is written to the working copy's git config so the
    commit (and any later ones in the same checkout) carry the requester's
    name and email.
    """
    await _run_git(["config", "user.name", author_name], cwd=repo_path)
    await _run_git(["config", "user.email", author_email], cwd=repo_path)

    await _run_git(["add", "-A"], cwd=repo_path)
    status = await _run_git(["status", "--porcelain"], cwd=repo_path)
    if not status.strip():
        logger.info("Nothing to commit in %s", repo_path)
        return None

    await _run_git(["commit", "-m", message], cwd=repo_path)
    sha = await _run_git(["rev-parse", "HEAD"], cwd=repo_path)
    return sha


async def push(
    repo_path: str | Path,
    *,
    remote: str = "origin",
    branch: str = "main",
) -> None:
    """Push *branch* to *remote* and set upstream."""
    await _run_git(["push", "-u", remote, branch], cwd=repo_path)

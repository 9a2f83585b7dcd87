"""Core error hierarchy.

Every error carries typed fields (not just a message string),
supports ``to_dict()`` for serialisation into API error payloads,
and has a readable ``__str__`` for logging.

Build and test failures are *not* errors here: they are captured as data
on ``Attempt`` records and never escape the retry loop as exceptions.
"""

from __future__ import annotations


class SmithError(Exception):
    """Base error for all core failures."""

    def __init__(self, message: str, *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, **self.detail}

    def __str__(self) -> str:
        return self.message


class GenerationError(SmithError):
    """The generative-completion call failed (network, auth, quota)."""

    def __init__(self, reason: str, *, model: str = "") -> None:
        self.reason = reason
        self.model = model
        detail: dict = {"reason": reason}
        if model:
            detail["model"] = model
        super().__init__(f"Code generation failed: {reason}", detail=detail)


class SandboxViolation(SmithError):
    """A path or command was rejected because it leaves the working directory."""

    def __init__(self, path: str, *, root: str | None = None, reason: str | None = None) -> None:
        self.path = path
        self.root = root or ""
        self.reason = reason or ""

        if reason:
            msg = f"Sandbox violation: {reason} (path={path!r}, root={root!r})"
        else:
            msg = f"Sandbox violation: '{path}' resolves outside the working directory"

        detail: dict = {"path": path}
        if root:
            detail["root"] = root
        if reason:
            detail["reason"] = reason
        super().__init__(msg, detail=detail)


class DefaultBranchError(SmithError):
    """Neither ``main`` nor ``master`` exists on the remote."""

    def __init__(self, repo_path: str, remote_branches: list[str]) -> None:
        self.repo_path = repo_path
        self.remote_branches = remote_branches
        super().__init__(
            "Could not determine default branch (main/master not found)",
            detail={"repo_path": repo_path, "remote_branches": remote_branches},
        )


class LoopCancelled(SmithError):
    """The retry loop observed a cancellation signal between attempts."""

    def __init__(self, attempts_completed: int, iterations: list | None = None) -> None:
        self.attempts_completed = attempts_completed
        self.iterations = iterations or []
        super().__init__(
            f"Code generation cancelled after {attempts_completed} attempt(s)",
            detail={"attempts_completed": attempts_completed},
        )


__all__ = [
    "DefaultBranchError",
    "GenerationError",
    "LoopCancelled",
    "SandboxViolation",
    "SmithError",
]

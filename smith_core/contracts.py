"""Core contracts — Pydantic models passed between loop components.

A ``Task`` comes in, one ``Attempt`` is recorded per pass through
generate → apply → verify, and the loop hands back a ``LoopResult``.
All models are frozen (immutable after creation).
"""

from __future__ import annotations

import enum
import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Defaults applied when a task arrives with blank fields
# ---------------------------------------------------------------------------

DEFAULT_ISSUE_KEY = "temp-issue"
DEFAULT_SUMMARY = "AI Task"
DEFAULT_DESCRIPTION = "No description provided."

_UNSAFE_KEY_RE = re.compile(r"[^A-Za-z0-9._-]|\.{2,}")


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


class Task(BaseModel):
    """A natural-language change request against one repository."""

    model_config = ConfigDict(frozen=True)

    issue_key: str = DEFAULT_ISSUE_KEY
    summary: str = DEFAULT_SUMMARY
    description: str = DEFAULT_DESCRIPTION
    repository_url: str = Field(..., description="Clone URL of the target repository")
    author_name: str = ""
    author_email: str = ""

    @field_validator("issue_key", mode="before")
    @classmethod
    def _default_issue_key(cls, value: str | None) -> str:
        return value or DEFAULT_ISSUE_KEY

    @field_validator("summary", mode="before")
    @classmethod
    def _default_summary(cls, value: str | None) -> str:
        return value or DEFAULT_SUMMARY

    @field_validator("description", mode="before")
    @classmethod
    def _default_description(cls, value: str | None) -> str:
        return value or DEFAULT_DESCRIPTION

    @property
    def slug(self) -> str:
        """``issue_key`` reduced to a single safe path component and ref name."""
        slug = _UNSAFE_KEY_RE.sub("_", self.issue_key).strip("._-")
        return slug or DEFAULT_ISSUE_KEY

    @property
    def branch_name(self) -> str:
        """Base name of the feature branch; the task service adds a run suffix."""
        return f"feature/{self.slug}"

    @property
    def commit_message(self) -> str:
        return f"feat({self.issue_key}): {self.summary}"


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


class RetrievedFile(BaseModel):
    """One hit from the semantic retriever, most relevant first."""

    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    score: float = 0.0


# ---------------------------------------------------------------------------
# Parsed model output
# ---------------------------------------------------------------------------


class FileBlock(BaseModel):
    """One ``- Path:`` / ``- Content:`` block from a model response.

    ``content`` is ``None`` when the fragment had no ``- Content:`` marker;
    such blocks are never written.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    content: str | None = None

    @property
    def is_placeholder(self) -> bool:
        """True when the model echoed ``<relative/path>`` instead of a path."""
        return "<" in self.path or ">" in self.path

    @property
    def has_content(self) -> bool:
        return self.content is not None


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class BuildOutcome(BaseModel):
    """Result of one verification stage.  Failure is a normal outcome."""

    model_config = ConfigDict(frozen=True)

    success: bool
    error_output: str | None = None
    kind: Literal["build", "test", "install"] = "build"

    @classmethod
    def ok(cls, kind: Literal["build", "test", "install"] = "build") -> BuildOutcome:
        return cls(success=True, kind=kind)

    @classmethod
    def failed(
        cls,
        error_output: str,
        kind: Literal["build", "test", "install"] = "build",
    ) -> BuildOutcome:
        return cls(success=False, error_output=error_output, kind=kind)


# ---------------------------------------------------------------------------
# Attempts and loop results
# ---------------------------------------------------------------------------


class Attempt(BaseModel):
    """Audit record for one pass through the retry loop."""

    model_config = ConfigDict(frozen=True)

    attempt_number: int = Field(..., ge=1)
    prompt: str
    raw_response: str
    build_error: str | None = None
    test_failure: str | None = None
    changed_paths: list[str] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.build_error or self.test_failure)

    @property
    def failure_text(self) -> str | None:
        return self.build_error or self.test_failure


class LoopState(str, enum.Enum):
    """States of the retry controller."""

    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED_RETRIES = "exhausted_retries"
    CANCELLED = "cancelled"


class LoopResult(BaseModel):
    """What the retry controller hands back when it reaches a terminal state."""

    model_config = ConfigDict(frozen=True)

    state: LoopState
    changed_files: list[str] = Field(default_factory=list)
    iterations: list[Attempt] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is LoopState.SUCCEEDED


class TaskResult(BaseModel):
    """Result contract returned to the caller of a whole task."""

    model_config = ConfigDict(frozen=True)

    message: str
    changed_files: list[str] = Field(default_factory=list)
    iterations: list[Attempt] = Field(default_factory=list)
    branch: str
    succeeded: bool = False
    pushed: bool = False


__all__ = [
    "DEFAULT_DESCRIPTION",
    "DEFAULT_ISSUE_KEY",
    "DEFAULT_SUMMARY",
    "Attempt",
    "BuildOutcome",
    "FileBlock",
    "LoopResult",
    "LoopState",
    "RetrievedFile",
    "Task",
    "TaskResult",
]

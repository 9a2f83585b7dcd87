"""Prompt builder — the exact instruction text sent to the model.

All functions are pure.  The output-format guidelines here are the
model-facing half of the contract that ``response_parser`` enforces.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_CONTEXT_CHARS = 32_000
EMPTY_REPO_CONTEXT = "No files in repo. Might be a new project."
TRUNCATION_MARKER = "[... context truncated ...]"

# Start of each retrieved-file block in a context digest.
_BLOCK_HEADER_RE = re.compile(r"^--- File \d+ \(.*\) ---$", re.MULTILINE)

_GUIDELINES = """\
--- GUIDELINES ---
• Only output file modifications.
• Use this exact format (no markdown/backticks!):
  - Path: <relative/path/to/file>
  - Content:
  <entire, updated file content here>

• Repeat the block for every file you change. Always give the full file content, never a diff.
• If new dependencies are required (for tests, lint rules, runtime, etc.), update package.json accordingly.
• Do not include explanations, comments, or JSON outside the file contents. Only code.
• If no files need changing, return nothing."""


# ---------------------------------------------------------------------------
# Context ceiling
# ---------------------------------------------------------------------------


def truncate_context(digest: str, max_chars: int = MAX_CONTEXT_CHARS) -> str:
    """Bound *digest* to roughly *max_chars*.

    Whole trailing file blocks (the least relevant) are dropped first.  If
    the first block alone is over the ceiling it is cut and
    ``TRUNCATION_MARKER`` appended.  Exceeding the ceiling is never an
    error.
    """
    if max_chars <= 0 or len(digest) <= max_chars:
        return digest

    starts = [m.start() for m in _BLOCK_HEADER_RE.finditer(digest)]
    if starts and starts[0] == 0:
        ends = starts[1:] + [len(digest)]
        kept_end = 0
        for end in ends:
            if end > max_chars:
                break
            kept_end = end
        if kept_end:
            return digest[:kept_end].rstrip("\n") + f"\n{TRUNCATION_MARKER}"

    return digest[:max_chars].rstrip() + f"\n{TRUNCATION_MARKER}"


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------


def build_prompt(
    context_digest: str,
    summary: str,
    description: str,
    *,
    max_context_chars: int = MAX_CONTEXT_CHARS,
) -> str:
    """Assemble the full instruction text for one attempt."""
    context = truncate_context(context_digest, max_context_chars) if context_digest else ""
    return (
        "You are an expert software engineer collaborating on a real codebase.\n"
        "Your job is to implement the change described below—exactly and completely.\n"
        "\n"
        "--- REPOSITORY CONTEXT ---\n"
        f"{context or EMPTY_REPO_CONTEXT}\n"
        "\n"
        "--- ISSUE ---\n"
        f"{summary}\n"
        f"{description}\n"
        "\n"
        f"{_GUIDELINES}"
    ).strip()


def build_retry_description(failure_text: str) -> str:
    """Description for the next attempt, embedding *failure_text* verbatim."""
    return (
        f"Previous code generated errors:\n{failure_text}\n"
        "Please provide corrected code changes."
    )


__all__ = [
    "EMPTY_REPO_CONTEXT",
    "MAX_CONTEXT_CHARS",
    "TRUNCATION_MARKER",
    "build_prompt",
    "build_retry_description",
    "truncate_context",
]

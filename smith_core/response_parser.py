"""Model response parser — split raw model output into file blocks.

The model is instructed to answer with nothing but blocks of the shape::

    - Path: src/health.ts
    - Content:
    <entire file content>

This module turns that text into ``FileBlock`` models.  Parsing is a small
line-scanning state machine rather than ad-hoc splitting so that the edge
cases (preamble chatter, a path with no content marker, fenced content)
are explicit.

All functions are pure string processors — no I/O, no side effects.
"""

from __future__ import annotations

import enum
import re

from smith_core.contracts import FileBlock

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PATH_MARKER = "- Path:"
CONTENT_MARKER = "- Content:"

# Opening fence, optionally followed by a language tag (```ts, ```c++, ```json5)
_FENCE_OPEN_RE = re.compile(r"^```[\w+#.-]*\s*$")
_FENCE_CLOSE_RE = re.compile(r"^```\s*$")


class _ScanState(enum.Enum):
    PREAMBLE = "preamble"
    EXPECT_CONTENT = "expect_content"
    CONTENT = "content"


# ---------------------------------------------------------------------------
# Content cleaning
# ---------------------------------------------------------------------------


def clean_content(raw: str) -> str:
    """Strip one wrapping code fence and outer whitespace from *raw*.

    Only a fence on the *first* line and a bare closing fence on the *last*
    line are removed; fences inside the body are preserved.

    >>> clean_content("```ts\\nexport const x = 1;\\n```\\n")
    'export const x = 1;'
    """
    text = raw.strip()
    if not text:
        return ""

    lines = text.split("\n")
    if _FENCE_OPEN_RE.match(lines[0].strip()):
        lines = lines[1:]
    if lines and _FENCE_CLOSE_RE.match(lines[-1].strip()):
        lines = lines[:-1]

    return "\n".join(lines).strip()


# ---------------------------------------------------------------------------
# Block scanner
# ---------------------------------------------------------------------------


def _path_from_marker(line: str) -> str:
    return line.strip()[len(PATH_MARKER):].strip()


def parse_file_blocks(raw: str) -> list[FileBlock]:
    """Scan *raw* model output into ``FileBlock`` models, in order.

    Rules:

    1. Text before the first ``- Path:`` line is discarded.
    2. A ``- Path:`` line opens a new fragment; its remainder is the path.
       The marker is reserved, so it also terminates the previous block.
    3. The first ``- Content:`` line after the path switches to content;
       everything until the next ``- Path:`` line (or end of text) is the
       raw content, cleaned with ``clean_content``.
    4. A fragment that never reaches ``- Content:`` yields a block whose
       ``content`` is ``None``.

    Placeholder paths are *not* filtered here — callers decide via
    ``FileBlock.is_placeholder``.
    """
    if not raw:
        return []

    blocks: list[FileBlock] = []
    state = _ScanState.PREAMBLE
    path = ""
    body: list[str] = []

    def _flush() -> None:
        if state is _ScanState.CONTENT:
            blocks.append(FileBlock(path=path, content=clean_content("\n".join(body))))
        elif state is _ScanState.EXPECT_CONTENT:
            blocks.append(FileBlock(path=path, content=None))

    for line in raw.splitlines():
        stripped = line.strip()

        if stripped.startswith(PATH_MARKER):
            _flush()
            path = _path_from_marker(line)
            body = []
            state = _ScanState.EXPECT_CONTENT
            continue

        if state is _ScanState.EXPECT_CONTENT:
            if stripped.startswith(CONTENT_MARKER):
                state = _ScanState.CONTENT
            continue

        if state is _ScanState.CONTENT:
            body.append(line)

    _flush()
    return blocks


__all__ = [
    "CONTENT_MARKER",
    "PATH_MARKER",
    "clean_content",
    "parse_file_blocks",
]

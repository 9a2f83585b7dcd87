"""Context gatherer — digest of the most relevant files for a task.

Retrieval is delegated to a ``Retriever``; this module only decides what
to index, turns hits into the numbered digest the prompt embeds, and
degrades to a sentinel when nothing can be retrieved.
"""

from __future__ import annotations

import logging
from pathlib import Path

from smith_core.contracts import RetrievedFile
from smith_core.retrieval import DEFAULT_TOP_K, Retriever

logger = logging.getLogger(__name__)

NO_FILES_SENTINEL = "No files available."
DEFAULT_SOURCE_DIR = "src"


def format_digest(files: list[RetrievedFile], *, root: str | Path | None = None) -> str:
    """Render hits as ``--- File i (path) ---`` blocks in retrieval order."""
    blocks: list[str] = []
    for i, hit in enumerate(files, start=1):
        blocks.append(f"--- File {i} ({_display_path(hit.path, root)}) ---\n{hit.content}")
    return "\n".join(blocks)


def _display_path(path: str, root: str | Path | None) -> str:
    if root is None:
        return path
    try:
        return Path(path).resolve().relative_to(Path(root).resolve()).as_posix()
    except ValueError:
        return path


class ContextGatherer:
    """Produce the repository-context digest for one attempt."""

    def __init__(
        self,
        retriever: Retriever,
        *,
        source_dir: str = DEFAULT_SOURCE_DIR,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self.retriever = retriever
        self.source_dir = source_dir
        self.top_k = top_k

    async def gather(self, working_dir: str | Path, query: str) -> str:
        """Return the context digest, or ``NO_FILES_SENTINEL``.

        Never raises: indexing and query failures are logged and degrade to
        the sentinel so the task can still proceed.
        """
        source_path = Path(working_dir) / self.source_dir
        if not source_path.is_dir():
            logger.warning("No source directory at %s", source_path)
            return NO_FILES_SENTINEL

        try:
            collection = await self.retriever.index(source_path, query)
            hits = await self.retriever.query(collection, query, self.top_k)
        except Exception as exc:
            logger.warning("Context retrieval failed (%s: %s)", type(exc).__name__, exc)
            return NO_FILES_SENTINEL

        logger.info("Relevant files count: %d", len(hits))
        if not hits:
            return NO_FILES_SENTINEL
        return format_digest(hits, root=working_dir)


__all__ = [
    "DEFAULT_SOURCE_DIR",
    "NO_FILES_SENTINEL",
    "ContextGatherer",
    "format_digest",
]

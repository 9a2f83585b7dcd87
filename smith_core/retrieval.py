"""Semantic retrieval — index a source tree and query it by meaning.

The retry loop only depends on the ``Retriever`` protocol.  The bundled
``EmbeddingRetriever`` keeps vectors in an in-process ``VectorStore`` and
gets embeddings from an injected async callable, so tests can substitute a
deterministic fake and production wires in the embeddings HTTP client.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Protocol

from smith_core.contracts import RetrievedFile

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_EXTENSIONS: tuple[str, ...] = (".js", ".ts", ".tsx", ".jsx")
DEFAULT_TOP_K = 10
MAX_EMBED_CHARS = 8000

_MIN_KEY_LEN = 3
_MAX_KEY_LEN = 64
_INVALID_KEY_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

Embedder = Callable[[str], Awaitable[list[float]]]


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class Retriever(Protocol):
    """Capability consumed by the context gatherer."""

    async def index(self, directory: str | Path, collection_key: str) -> str:
        """Index *directory*; return the sanitised collection key."""
        ...

    async def query(self, collection_key: str, text: str, top_k: int = DEFAULT_TOP_K) -> list[RetrievedFile]:
        """Return up to *top_k* files ordered most relevant first."""
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def sanitize_collection_key(key: str) -> str:
    """Map an arbitrary string onto a valid collection name.

    Invalid characters become ``_``; the name must start and end with an
    alphanumeric and be 3–64 chars long.  Names that would be too long fall
    back to the md5 hex digest of the *original* key.
    """
    safe = _INVALID_KEY_CHARS.sub("_", key)
    if not safe[:1].isalnum() or not safe[:1].isascii():
        safe = "a" + safe
    if not safe[-1:].isalnum() or not safe[-1:].isascii():
        safe = safe + "z"

    if len(safe) < _MIN_KEY_LEN:
        safe = safe.ljust(_MIN_KEY_LEN, "x")
    elif len(safe) > _MAX_KEY_LEN:
        safe = hashlib.md5(key.encode("utf-8")).hexdigest()
    return safe


def collect_source_files(
    directory: str | Path,
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS,
) -> list[Path]:
    """Recursively list files under *directory* with one of *extensions*."""
    root = Path(directory)
    if not root.is_dir():
        return []
    return sorted(
        p for p in root.rglob("*")
        if p.is_file() and p.suffix in extensions and "node_modules" not in p.parts
    )


def cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if not norm_a or not norm_b:
        return 0.0
    return dot / (norm_a * norm_b)


# ---------------------------------------------------------------------------
# In-process vector store
# ---------------------------------------------------------------------------


@dataclass
class _Entry:
    path: str
    content: str
    digest: str
    embedding: list[float]


@dataclass
class VectorStore:
    """Collections of embedded documents, upserted by path."""

    collections: dict[str, dict[str, _Entry]] = field(default_factory=dict)

    def get_or_create(self, name: str) -> dict[str, _Entry]:
        return self.collections.setdefault(name, {})

    def digest_of(self, name: str, path: str) -> str | None:
        entry = self.collections.get(name, {}).get(path)
        return entry.digest if entry else None

    def upsert(self, name: str, path: str, content: str, digest: str, embedding: list[float]) -> None:
        self.get_or_create(name)[path] = _Entry(path, content, digest, embedding)

    def prune(self, name: str, keep: set[str]) -> int:
        """Drop entries of *name* whose path is not in *keep*.  Returns the count."""
        collection = self.collections.get(name, {})
        stale = [path for path in collection if path not in keep]
        for path in stale:
            del collection[path]
        return len(stale)

    def nearest(self, name: str, embedding: list[float], top_k: int) -> list[RetrievedFile]:
        entries = self.collections.get(name, {}).values()
        scored = sorted(
            ((cosine_similarity(embedding, e.embedding), e) for e in entries),
            key=lambda pair: (-pair[0], pair[1].path),
        )
        return [
            RetrievedFile(path=e.path, content=e.content, score=score)
            for score, e in scored[:top_k]
        ]


# ---------------------------------------------------------------------------
# Embedding retriever
# ---------------------------------------------------------------------------


class EmbeddingRetriever:
    """``Retriever`` backed by an embeddings callable and a ``VectorStore``."""

    def __init__(
        self,
        embed: Embedder,
        *,
        store: VectorStore | None = None,
        extensions: tuple[str, ...] = DEFAULT_EXTENSIONS,
    ) -> None:
        self._embed = embed
        self.store = store or VectorStore()
        self.extensions = extensions

    async def index(self, directory: str | Path, collection_key: str) -> str:
        name = sanitize_collection_key(collection_key)
        self.store.get_or_create(name)
        files = await asyncio.to_thread(collect_source_files, directory, self.extensions)

        embedded = 0
        seen: set[str] = set()
        for path in files:
            content = await asyncio.to_thread(path.read_text, "utf-8", "replace")
            if not content.strip():
                continue
            key = str(path.resolve())
            seen.add(key)
            digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
            if self.store.digest_of(name, key) == digest:
                continue
            vector = await self._embed(content[:MAX_EMBED_CHARS])
            self.store.upsert(name, key, content, digest, vector)
            embedded += 1

        # A collection mirrors exactly the tree last indexed into it.
        dropped = self.store.prune(name, seen)

        logger.info(
            "Indexed %d file(s) into collection %s (%d re-embedded, %d dropped)",
            len(files), name, embedded, dropped,
        )
        return name

    async def query(self, collection_key: str, text: str, top_k: int = DEFAULT_TOP_K) -> list[RetrievedFile]:
        name = sanitize_collection_key(collection_key)
        vector = await self._embed(text[:MAX_EMBED_CHARS])
        return self.store.nearest(name, vector, top_k)


__all__ = [
    "DEFAULT_EXTENSIONS",
    "DEFAULT_TOP_K",
    "EmbeddingRetriever",
    "Embedder",
    "Retriever",
    "VectorStore",
    "collect_source_files",
    "cosine_similarity",
    "sanitize_collection_key",
]

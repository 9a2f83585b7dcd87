"""Tests for smith_core.context — digest formatting and degradation."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from smith_core.context import NO_FILES_SENTINEL, ContextGatherer, format_digest
from smith_core.contracts import RetrievedFile


def _retriever(hits=None, *, index_error=None):
    retriever = AsyncMock()
    retriever.index.side_effect = index_error
    if index_error is None:
        retriever.index.return_value = "collection"
    retriever.query.return_value = hits or []
    return retriever


def test_format_digest_numbers_from_one(tmp_path):
    files = [
        RetrievedFile(path=str(tmp_path / "src" / "a.ts"), content="A"),
        RetrievedFile(path=str(tmp_path / "src" / "b.ts"), content="B"),
    ]
    assert format_digest(files, root=tmp_path) == (
        "--- File 1 (src/a.ts) ---\nA\n--- File 2 (src/b.ts) ---\nB"
    )


def test_format_digest_keeps_foreign_paths():
    files = [RetrievedFile(path="/elsewhere/x.ts", content="X")]
    assert format_digest(files, root="/work") == "--- File 1 (/elsewhere/x.ts) ---\nX"


class TestContextGatherer:
    @pytest.mark.asyncio
    async def test_missing_source_dir_returns_sentinel(self, tmp_path):
        retriever = _retriever()
        result = await ContextGatherer(retriever).gather(tmp_path, "q")
        assert result == NO_FILES_SENTINEL
        retriever.index.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_digest_from_hits(self, tmp_path):
        (tmp_path / "src").mkdir()
        hits = [RetrievedFile(path=str(tmp_path / "src" / "health.ts"), content="ok")]
        retriever = _retriever(hits)
        result = await ContextGatherer(retriever, top_k=5).gather(tmp_path, "Add health")
        assert result == "--- File 1 (src/health.ts) ---\nok"
        retriever.index.assert_awaited_once_with(tmp_path / "src", "Add health")
        retriever.query.assert_awaited_once_with("collection", "Add health", 5)

    @pytest.mark.asyncio
    async def test_custom_source_dir(self, tmp_path):
        (tmp_path / "lib").mkdir()
        retriever = _retriever([RetrievedFile(path="lib/x.ts", content="x")])
        await ContextGatherer(retriever, source_dir="lib").gather(tmp_path, "q")
        assert retriever.index.await_args.args[0] == tmp_path / "lib"

    @pytest.mark.asyncio
    async def test_retrieval_failure_degrades(self, tmp_path):
        (tmp_path / "src").mkdir()
        retriever = _retriever(index_error=ConnectionError("vector store down"))
        assert await ContextGatherer(retriever).gather(tmp_path, "q") == NO_FILES_SENTINEL

    @pytest.mark.asyncio
    async def test_no_hits_returns_sentinel(self, tmp_path):
        (tmp_path / "src").mkdir()
        assert await ContextGatherer(_retriever([])).gather(tmp_path, "q") == NO_FILES_SENTINEL

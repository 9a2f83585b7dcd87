"""Tests for smith_core.retrieval — collection keys, indexing and ranking."""

from __future__ import annotations

import hashlib

import pytest

from smith_core.retrieval import (
    MAX_EMBED_CHARS,
    EmbeddingRetriever,
    VectorStore,
    collect_source_files,
    cosine_similarity,
    sanitize_collection_key,
)


# Vocabulary-based fake embedder: deterministic and meaning-ish.
_VOCAB = ("health", "user", "order", "express", "router")


def _fake_vector(text: str) -> list[float]:
    lowered = text.lower()
    return [float(lowered.count(word)) for word in _VOCAB] + [1e-3]


class _CountingEmbedder:
    def __init__(self):
        self.calls: list[str] = []

    async def __call__(self, text: str) -> list[float]:
        self.calls.append(text)
        return _fake_vector(text)


# ═══════════════════════════════════════════════════════════════════════════
# sanitize_collection_key
# ═══════════════════════════════════════════════════════════════════════════


class TestSanitizeCollectionKey:
    def test_valid_key_unchanged(self):
        assert sanitize_collection_key("PROJ-42") == "PROJ-42"

    def test_invalid_chars_replaced(self):
        assert sanitize_collection_key("add health/check") == "add_health_check"

    def test_non_alnum_bounds_fixed(self):
        key = sanitize_collection_key("_hidden_")
        assert key[0].isalnum() and key[-1].isalnum()

    def test_short_key_padded(self):
        assert len(sanitize_collection_key("a")) == 3

    def test_long_key_hashes_original(self):
        key = "Add a health endpoint " * 10
        assert sanitize_collection_key(key) == hashlib.md5(key.encode()).hexdigest()

    @pytest.mark.parametrize("key", ["", "x", "PROJ-1", "??", "a b c", "é" * 70, "-" * 64])
    def test_constraints_and_idempotence(self, key):
        safe = sanitize_collection_key(key)
        assert 3 <= len(safe) <= 64
        assert safe[0].isalnum() and safe[-1].isalnum()
        assert sanitize_collection_key(safe) == safe


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def test_collect_source_files_filters_extension_and_node_modules(tmp_path):
    (tmp_path / "a.ts").write_text("a")
    (tmp_path / "b.md").write_text("b")
    (tmp_path / "node_modules" / "lib").mkdir(parents=True)
    (tmp_path / "node_modules" / "lib" / "c.js").write_text("c")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "d.tsx").write_text("d")
    found = [p.relative_to(tmp_path).as_posix() for p in collect_source_files(tmp_path)]
    assert found == ["a.ts", "nested/d.tsx"]


def test_collect_source_files_missing_dir(tmp_path):
    assert collect_source_files(tmp_path / "nope") == []


def test_cosine_similarity():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# EmbeddingRetriever
# ═══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def src_tree(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "health.ts").write_text("export const health = () => 'health ok';")
    (src / "users.ts").write_text("export const user = { name: 'user' };")
    (src / "orders.ts").write_text("export const order = 1;")
    (src / "empty.ts").write_text("   ")
    return src


class TestEmbeddingRetriever:
    @pytest.mark.asyncio
    async def test_query_ranks_most_relevant_first(self, src_tree):
        retriever = EmbeddingRetriever(_CountingEmbedder())
        key = await retriever.index(src_tree, "Add health check")
        hits = await retriever.query(key, "health endpoint", top_k=2)
        assert len(hits) == 2
        assert hits[0].path.endswith("health.ts")
        assert hits[0].score >= hits[1].score

    @pytest.mark.asyncio
    async def test_index_returns_sanitised_key(self, src_tree):
        retriever = EmbeddingRetriever(_CountingEmbedder())
        assert await retriever.index(src_tree, "add health/check") == "add_health_check"

    @pytest.mark.asyncio
    async def test_empty_files_not_embedded(self, src_tree):
        embed = _CountingEmbedder()
        await EmbeddingRetriever(embed).index(src_tree, "key")
        assert len(embed.calls) == 3

    @pytest.mark.asyncio
    async def test_unchanged_files_not_reembedded(self, src_tree):
        embed = _CountingEmbedder()
        retriever = EmbeddingRetriever(embed, store=VectorStore())
        await retriever.index(src_tree, "key")
        (src_tree / "orders.ts").write_text("export const order = 2;")
        await retriever.index(src_tree, "key")
        assert len(embed.calls) == 4

    @pytest.mark.asyncio
    async def test_embed_input_truncated(self, tmp_path):
        (tmp_path / "big.ts").write_text("x" * (MAX_EMBED_CHARS + 500))
        embed = _CountingEmbedder()
        await EmbeddingRetriever(embed).index(tmp_path, "key")
        assert len(embed.calls[0]) == MAX_EMBED_CHARS

    @pytest.mark.asyncio
    async def test_query_unknown_collection_is_empty(self):
        retriever = EmbeddingRetriever(_CountingEmbedder())
        assert await retriever.query("never-indexed", "anything") == []

    @pytest.mark.asyncio
    async def test_same_key_on_another_tree_drops_previous_files(self, tmp_path):
        repo_a = tmp_path / "A" / "src"
        repo_b = tmp_path / "B" / "src"
        repo_a.mkdir(parents=True)
        repo_b.mkdir(parents=True)
        (repo_a / "secret_a.ts").write_text("export const SECRET_OF_REPO_A = 1;")
        (repo_b / "health.ts").write_text("export const health = () => 'ok';")

        retriever = EmbeddingRetriever(_CountingEmbedder())
        key = "AI Task\n\nNo description provided."
        await retriever.index(repo_a, key)
        collection = await retriever.index(repo_b, key)
        hits = await retriever.query(collection, key, top_k=10)

        assert [h.path for h in hits] == [str((repo_b / "health.ts").resolve())]
        assert all("SECRET_OF_REPO_A" not in h.content for h in hits)

    @pytest.mark.asyncio
    async def test_deleted_file_leaves_collection(self, src_tree):
        retriever = EmbeddingRetriever(_CountingEmbedder())
        await retriever.index(src_tree, "key")
        (src_tree / "orders.ts").unlink()
        await retriever.index(src_tree, "key")
        hits = await retriever.query("key", "order", top_k=10)
        assert not any(h.path.endswith("orders.ts") for h in hits)


def test_vector_store_prune():
    store = VectorStore()
    store.upsert("c", "/a.ts", "a", "d1", [1.0])
    store.upsert("c", "/b.ts", "b", "d2", [1.0])
    assert store.prune("c", {"/a.ts"}) == 1
    assert list(store.collections["c"]) == ["/a.ts"]
    assert store.prune("missing", set()) == 0

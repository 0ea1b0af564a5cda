"""Tests for the knowledge/memory store adapters.

Every behavioural test runs against both SqlKnowledgeStore (session
DuckDB) and InMemoryKnowledgeStore, so the two stay interchangeable.
"""

from unittest.mock import patch

import pytest

from context_engine.errors import StoreError
from context_engine.models import KnowledgeChunk, KnowledgeSource, UserMemory
from context_engine.rag.store import (
    InMemoryKnowledgeStore,
    KnowledgeStore,
    SqlKnowledgeStore,
    get_default_store,
)

Q = [1.0, 0.0, 0.0]


@pytest.fixture(params=["sql", "memory"])
def store(request):
    if request.param == "sql":
        request.getfixturevalue("clean_db")
        return SqlKnowledgeStore()
    return InMemoryKnowledgeStore()


def _chunk(company="c1", sector="Financeiro", source="s1", index=0,
           content="conteúdo", embedding=None, tags=None):
    return KnowledgeChunk(
        company_id=company, sector=sector, source_id=source, chunk_index=index,
        content=content, tags=tags or [], embedding=embedding or Q,
    )


def _memory(company="c1", user="u1", content="Prefiro relatórios curtos.",
            embedding=None, memory_type="preference"):
    return UserMemory(
        company_id=company, user_id=user, memory_type=memory_type,
        content=content, embedding=embedding or Q, confidence=0.7,
    )


# ---------------------------------------------------------------------------
# Knowledge search
# ---------------------------------------------------------------------------

class TestSearchKnowledgeChunks:

    def test_threshold_and_order(self, store):
        store.insert_chunks([
            _chunk(content="close", embedding=[0.8, 0.6, 0.0]),
            _chunk(content="exact", embedding=[1.0, 0.0, 0.0]),
            _chunk(content="orthogonal", embedding=[0.0, 1.0, 0.0]),
        ])
        hits = store.search_knowledge_chunks("c1", Q, threshold=0.7)

        assert [h.content for h in hits] == ["exact", "close"]
        assert hits[0].score == pytest.approx(1.0)
        assert hits[1].score == pytest.approx(0.8)

    def test_tenant_scoped(self, store):
        store.insert_chunks([_chunk(company="c2", content="other tenant")])
        assert store.search_knowledge_chunks("c1", Q, threshold=0.0) == []

    def test_sector_filter(self, store):
        store.insert_chunks([
            _chunk(sector="Financeiro", content="fin"),
            _chunk(sector="Manutenção", content="man"),
        ])
        hits = store.search_knowledge_chunks("c1", Q, sector="Manutenção", threshold=0.0)
        assert [h.content for h in hits] == ["man"]
        assert hits[0].sector == "Manutenção"

    def test_limit(self, store):
        store.insert_chunks([_chunk(index=i, content=f"c{i}") for i in range(5)])
        assert len(store.search_knowledge_chunks("c1", Q, limit=2, threshold=0.0)) == 2

    def test_citation_fields(self, store):
        store.insert_chunks([_chunk(source="src-9", tags=["boleto", "cobrança"])])
        hit = store.search_knowledge_chunks("c1", Q)[0]
        assert hit.source_id == "src-9"
        assert hit.tags == ["boleto", "cobrança"]
        assert hit.chunk_id


class TestListKnowledgeChunks:

    def test_scoped_and_limited(self, store):
        store.insert_chunks([_chunk(index=i, content=f"c{i}") for i in range(4)])
        store.insert_chunks([_chunk(company="c2")])

        rows = store.list_knowledge_chunks("c1", limit=3)
        assert len(rows) == 3
        assert {r.content for r in rows} <= {"c0", "c1", "c2", "c3"}

    def test_sector_filter(self, store):
        store.insert_chunks([_chunk(sector="Projetos", content="p"), _chunk(content="f")])
        rows = store.list_knowledge_chunks("c1", sector="Projetos")
        assert [r.content for r in rows] == ["p"]


# ---------------------------------------------------------------------------
# Memories
# ---------------------------------------------------------------------------

class TestUserMemories:

    def test_save_assigns_id_and_created_at(self, store):
        saved = store.save_user_memory(_memory())
        assert saved.id
        assert saved.created_at is not None
        assert saved.usage_count == 0

    def test_search_scoped_by_tenant_and_user(self, store):
        store.save_user_memory(_memory(content="mine"))
        store.save_user_memory(_memory(user="u2", content="colleague"))
        store.save_user_memory(_memory(company="c2", content="other tenant"))

        found = store.search_user_memories("c1", "u1", Q, limit=10)
        assert [m.content for m in found] == ["mine"]

    def test_search_ordered_by_similarity(self, store):
        store.save_user_memory(_memory(content="far", embedding=[0.0, 1.0, 0.0]))
        store.save_user_memory(_memory(content="near", embedding=[0.9, 0.1, 0.0]))

        found = store.search_user_memories("c1", "u1", Q, limit=10)
        assert [m.content for m in found] == ["near", "far"]
        assert found[0].embedding == pytest.approx([0.9, 0.1, 0.0])

    def test_search_limit(self, store):
        for i in range(5):
            store.save_user_memory(_memory(content=f"m{i}"))
        assert len(store.search_user_memories("c1", "u1", Q, limit=3)) == 3
        assert store.search_user_memories("c1", "u1", Q, limit=0) == []

    def test_increment_deduplicates_ids(self, store):
        a = store.save_user_memory(_memory(content="a"))
        b = store.save_user_memory(_memory(content="b", embedding=[0.5, 0.5, 0.0]))

        assert store.increment_memory_usage("c1", [a.id, a.id, b.id]) == 2

        counts = {m.content: m for m in store.search_user_memories("c1", "u1", Q, limit=10)}
        assert counts["a"].usage_count == 1
        assert counts["b"].usage_count == 1
        assert counts["a"].last_used_at is not None

    def test_increment_is_cumulative(self, store):
        a = store.save_user_memory(_memory())
        store.increment_memory_usage("c1", [a.id])
        store.update_memory_usage("c1", a.id)

        found = store.search_user_memories("c1", "u1", Q, limit=1)[0]
        assert found.usage_count == 2

    def test_increment_empty_and_unknown(self, store):
        assert store.increment_memory_usage("c1", []) == 0
        assert store.increment_memory_usage("c1", ["no-such-id"]) == 0

    def test_increment_is_tenant_scoped(self, store):
        theirs = store.save_user_memory(_memory(company="c2"))

        assert store.increment_memory_usage("c1", [theirs.id]) == 0
        store.update_memory_usage("c1", theirs.id)

        found = store.search_user_memories("c2", "u1", Q, limit=1)[0]
        assert found.usage_count == 0
        assert found.last_used_at is None


# ---------------------------------------------------------------------------
# Ingestion helpers
# ---------------------------------------------------------------------------

class TestSourcesAndChunks:

    def test_upsert_source_is_idempotent(self, store):
        src = KnowledgeSource(company_id="c1", sector="Financeiro", title="Política de cobrança")
        first = store.upsert_source(src)
        assert store.upsert_source(src) == first
        assert store.get_stats("c1")["sources"] == 1

    def test_delete_chunks_keeps_source(self, store):
        sid = store.upsert_source(KnowledgeSource("c1", "Financeiro", "Manual"))
        store.insert_chunks([_chunk(source=sid, index=i) for i in range(3)])

        assert store.delete_chunks("c1", sid) == 3
        assert store.get_stats("c1")["total_chunks"] == 0
        assert store.get_stats("c1")["sources"] == 1

    def test_delete_source(self, store):
        sid = store.upsert_source(KnowledgeSource("c1", "Financeiro", "Manual"))
        store.insert_chunks([_chunk(source=sid), _chunk(source="other")])

        assert store.delete_source("c1", sid) == 1
        stats = store.get_stats("c1")
        assert stats["sources"] == 0
        assert stats["total_chunks"] == 1

    def test_delete_source_of_other_tenant_is_noop(self, store):
        sid = store.upsert_source(KnowledgeSource("c1", "Financeiro", "Manual"))
        store.insert_chunks([_chunk(source=sid)])

        assert store.delete_source("c2", sid) == 0
        assert store.get_stats("c1")["total_chunks"] == 1

    def test_clear_company_keeps_memories_and_other_tenants(self, store):
        store.upsert_source(KnowledgeSource("c1", "Financeiro", "Manual"))
        store.insert_chunks([_chunk(), _chunk(index=1), _chunk(company="c2")])
        store.save_user_memory(_memory())

        assert store.clear_company("c1") == 2
        assert store.get_stats("c1") == {
            "total_chunks": 0, "by_sector": {}, "sources": 0, "memories": 1,
        }
        assert store.get_stats("c2")["total_chunks"] == 1

    def test_update_chunk_tags_scoped(self, store):
        chunk = _chunk(tags=["old"])
        store.insert_chunks([chunk])

        assert store.update_chunk_tags("c2", chunk.id, ["stolen"]) is False
        assert store.update_chunk_tags("c1", chunk.id, ["boleto", "pix"]) is True
        assert store.search_knowledge_chunks("c1", Q)[0].tags == ["boleto", "pix"]

    def test_stats_by_sector(self, store):
        store.insert_chunks([
            _chunk(sector="Financeiro"), _chunk(sector="Financeiro", index=1),
            _chunk(sector="Projetos"), _chunk(company="c2", sector="Projetos"),
        ])
        stats = store.get_stats("c1")
        assert stats["total_chunks"] == 3
        assert stats["by_sector"] == {"Financeiro": 2, "Projetos": 1}
        assert store.get_stats()["total_chunks"] == 4


# ---------------------------------------------------------------------------
# Protocol and failures
# ---------------------------------------------------------------------------

class TestStoreContract:

    def test_both_adapters_satisfy_protocol(self):
        assert isinstance(SqlKnowledgeStore(), KnowledgeStore)
        assert isinstance(InMemoryKnowledgeStore(), KnowledgeStore)

    def test_default_store_is_singleton(self):
        first = get_default_store()
        assert isinstance(first, SqlKnowledgeStore)
        assert get_default_store() is first

    def test_connection_failure_raises_store_error(self):
        with patch("context_engine.db.get_connection", side_effect=RuntimeError("db down")):
            with pytest.raises(StoreError, match="Knowledge search failed: db down"):
                SqlKnowledgeStore().search_knowledge_chunks("c1", Q)

    def test_query_failure_raises_store_error(self, clean_db):
        with patch("context_engine.db.execute", side_effect=RuntimeError("syntax")):
            with pytest.raises(StoreError, match="Memory save failed"):
                SqlKnowledgeStore().save_user_memory(_memory())

    def test_returned_memories_are_copies(self):
        store = InMemoryKnowledgeStore()
        saved = store.save_user_memory(_memory())
        saved.usage_count = 99
        assert store.get_memory(saved.id).usage_count == 0

"""Tests for knowledge ingestion and the seed script."""

from unittest.mock import patch

import pytest

from context_engine.errors import EmbeddingError
from context_engine.rag.ingest import ingest_text
from context_engine.rag.store import InMemoryKnowledgeStore

Q = [1.0, 0.0, 0.0]


def _fake_embed(texts):
    return [Q for _ in texts]


@pytest.fixture
def mock_embed_texts():
    with patch("context_engine.rag.embeddings.embed_texts", side_effect=_fake_embed) as m:
        yield m


class TestIngestText:

    def test_short_text_single_chunk(self, mock_embed_texts):
        store = InMemoryKnowledgeStore()
        n = ingest_text("c1", "Financeiro", "Política de cobrança",
                        "Boletos vencem no dia 10 de cada mês.", ["boleto"], store=store)

        assert n == 1
        hits = store.search_knowledge_chunks("c1", Q)
        assert hits[0].content == "Boletos vencem no dia 10 de cada mês."
        assert hits[0].tags == ["boleto"]
        assert hits[0].sector == "Financeiro"

    def test_long_text_many_chunks(self, mock_embed_texts):
        store = InMemoryKnowledgeStore()
        text = " ".join(f"Regra {i}: reservas do salão exigem antecedência." for i in range(400))

        n = ingest_text("c1", "Comunicação", "Regimento", text, store=store)

        assert n > 1
        assert store.get_stats("c1")["total_chunks"] == n
        embedded = mock_embed_texts.call_args.args[0]
        assert len(embedded) == n

    def test_reingest_replaces_chunks(self, mock_embed_texts):
        store = InMemoryKnowledgeStore()
        ingest_text("c1", "Financeiro", "Política", "Versão antiga da política.", store=store)
        ingest_text("c1", "Financeiro", "Política", "Versão nova da política.", store=store)

        contents = [c.content for c in store.list_knowledge_chunks("c1")]
        assert contents == ["Versão nova da política."]
        assert store.get_stats("c1")["sources"] == 1

    def test_blank_text(self, mock_embed_texts):
        store = InMemoryKnowledgeStore()
        assert ingest_text("c1", "Financeiro", "Vazio", "   ", store=store) == 0
        mock_embed_texts.assert_not_called()
        assert store.get_stats("c1")["sources"] == 0

    def test_embedding_failure_writes_nothing(self):
        store = InMemoryKnowledgeStore()
        with patch("context_engine.rag.embeddings.embed_texts",
                   side_effect=EmbeddingError("Failed to generate batch embeddings: 429")):
            with pytest.raises(EmbeddingError):
                ingest_text("c1", "Financeiro", "Política", "Texto qualquer.", store=store)

        assert store.get_stats("c1") == {
            "total_chunks": 0, "by_sector": {}, "sources": 0, "memories": 0,
        }


class TestSeedKnowledge:

    def test_seeds_every_item(self, mock_embed_texts):
        from scripts.seed_knowledge import SEED_ITEMS, seed_knowledge

        store = InMemoryKnowledgeStore()
        result = seed_knowledge("c1", store=store)

        assert result == {"ok": len(SEED_ITEMS), "fail": 0, "chunks": len(SEED_ITEMS)}
        assert len(SEED_ITEMS) == 10
        assert store.get_stats("c1")["by_sector"] == {
            "Projetos": 2, "Financeiro": 3, "Manutenção": 3, "Comunicação": 2,
        }

    def test_rerun_is_idempotent(self, mock_embed_texts):
        from scripts.seed_knowledge import seed_knowledge

        store = InMemoryKnowledgeStore()
        seed_knowledge("c1", store=store)
        seed_knowledge("c1", store=store)
        assert store.get_stats("c1")["total_chunks"] == 10

    def test_clear_removes_other_knowledge(self, mock_embed_texts):
        from scripts.seed_knowledge import seed_knowledge

        store = InMemoryKnowledgeStore()
        ingest_text("c1", "Jurídico", "Contrato", "Cláusula antiga.", store=store)
        seed_knowledge("c1", clear=True, store=store)
        assert "Jurídico" not in store.get_stats("c1")["by_sector"]

    def test_failures_counted(self):
        from scripts.seed_knowledge import SEED_ITEMS, seed_knowledge

        with patch("context_engine.rag.embeddings.embed_texts", side_effect=EmbeddingError("down")):
            result = seed_knowledge("c1", store=InMemoryKnowledgeStore())
        assert result["ok"] == 0
        assert result["fail"] == len(SEED_ITEMS)

    def test_dry_run_never_embeds(self, capsys):
        from scripts.seed_knowledge import main

        with patch("context_engine.rag.embeddings.embed_texts") as mock_embed:
            assert main(["--company", "c1", "--dry-run"]) == 0
        mock_embed.assert_not_called()
        assert "Dry run complete: 10 chunks" in capsys.readouterr().out

    def test_company_required(self, monkeypatch, capsys):
        from scripts.seed_knowledge import main

        monkeypatch.delenv("COMPANY_ID", raising=False)
        assert main([]) == 1
        assert "COMPANY_ID is required" in capsys.readouterr().err

    def test_exit_code_on_failure(self):
        from scripts.seed_knowledge import main

        with patch("scripts.seed_knowledge.seed_knowledge",
                   return_value={"ok": 9, "fail": 1, "chunks": 9}), \
                patch("scripts.seed_knowledge.show_stats"):
            assert main(["--company", "c1"]) == 1

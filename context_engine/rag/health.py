"""Service stats and end-to-end health probe."""

from __future__ import annotations

import asyncio
import logging
import time

from context_engine.config import default_rag_config
from context_engine.models import RequestContext
from context_engine.rag import embeddings

logger = logging.getLogger(__name__)

HEALTH_USER_ID = "rag-health-check"
EMBEDDING_PROBE_TEXT = "verificar conhecimento setorial"


def get_stats() -> dict:
    """Embedding model, default retrieval policy and version."""
    from context_engine import __version__

    return {
        "embedding_model": embeddings.get_model_info(),
        "default_config": default_rag_config().to_dict(),
        "version": __version__,
    }


async def check_health(company_id: str, sector: str | None = None, *, store=None) -> dict:
    """Probe the embedding provider and the retrieval pipeline for one tenant.

    Each probe is isolated: a failure is reported in its own section and
    does not stop the other. The result is JSON-ready.
    """
    from context_engine.rag.retrieval import retrieve_knowledge

    context = RequestContext(
        company_id=company_id,
        user_id=HEALTH_USER_ID,
        context_mode="sector" if sector else "general",
        sector=sector,
    )
    result = {
        "success": True,
        "embedding": {"ok": False},
        "retrieval": {"ok": False},
        "stats": get_stats(),
    }

    t0 = time.monotonic()
    try:
        vector = await asyncio.to_thread(embeddings.embed_query, EMBEDDING_PROBE_TEXT)
        result["embedding"] = {
            "ok": len(vector) > 0,
            "dimensions": len(vector),
            "latency_ms": round((time.monotonic() - t0) * 1000),
        }
    except Exception as e:
        logger.warning("Health embedding probe failed: %s", e)
        result["embedding"] = {"ok": False, "error": str(e)}

    t0 = time.monotonic()
    probe_query = f"status projetos {sector}" if sector else "status geral"
    try:
        retrieved = await retrieve_knowledge(
            probe_query, context, {"use_memory": False}, store=store,
        )
        result["retrieval"] = {
            "ok": True,
            "citations_count": len(retrieved.citations),
            "sample": [c.to_dict() for c in retrieved.citations[:3]],
            "latency_ms": round((time.monotonic() - t0) * 1000),
        }
    except Exception as e:
        logger.warning("Health retrieval probe failed: %s", e)
        result["retrieval"] = {"ok": False, "error": str(e)}

    result["success"] = result["embedding"]["ok"] and result["retrieval"]["ok"]
    return result

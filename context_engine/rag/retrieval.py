"""Retrieval orchestrator: query embedding → vector + structured + memory → merged result.

Pipeline for one request:
    1. Embed the query once.
    2. Run vector search, heuristic structured retrieval and memory search
       concurrently (each in a worker thread), join.
    3. Merge citations: vector hits deduplicated, structured hits appended,
       everything sorted by score descending.
    4. Increment usage counts of the surfaced memories in one batched call.

Each step has an explicit failure policy (STEP_POLICIES): FATAL steps abort
the request with RetrievalError, DEGRADED steps log a warning and
contribute an empty result. The whole pipeline runs under a deadline of
config.timeout_seconds.

No automatic fallback: an empty vector result stays empty. Callers that
want unranked chunks use retrieve_fallback_knowledge() explicitly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace

from context_engine.config import RAGConfig, default_rag_config, memory_query_limit, resolve_config
from context_engine.errors import FailurePolicy, RetrievalError
from context_engine.heuristics import retriever as structured
from context_engine.models import KnowledgeCitation, RequestContext, RetrievalResult, UserMemory
from context_engine.rag import embeddings
from context_engine.rag.store import KnowledgeStore, get_default_store

logger = logging.getLogger(__name__)

# Score given to unranked fallback citations, well below any real match
FALLBACK_SCORE = 0.1

# Near-duplicate threshold for vector hits (word-set Jaccard)
DEDUP_SIMILARITY = 0.85

STEP_POLICIES: dict[str, FailurePolicy] = {
    "embedding": FailurePolicy.FATAL,
    "vector_search": FailurePolicy.FATAL,
    "structured_retrieval": FailurePolicy.DEGRADED,
    "memory_search": FailurePolicy.DEGRADED,
    "memory_usage_update": FailurePolicy.DEGRADED,
}


async def _run_step(step: str, fn, *args, default=None, **kwargs):
    """Run a blocking call in a worker thread under the step's failure policy."""
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except Exception as e:
        if STEP_POLICIES[step] is FailurePolicy.FATAL:
            raise
        logger.warning("Step %s failed, continuing without it: %s", step, e)
        return default


async def _skipped(value):
    return value


async def retrieve_knowledge(
    query: str,
    context: RequestContext,
    config_overrides: dict | None = None,
    *,
    config: RAGConfig | None = None,
    store: KnowledgeStore | None = None,
) -> RetrievalResult:
    """Retrieve knowledge and memories relevant to ``query`` for one tenant/user.

    Args:
        query: Natural language question.
        context: Tenant/user scope; every storage call is filtered by it.
        config_overrides: Per-request RAGConfig field overrides.
        config: Base policy, defaults to default_rag_config().
        store: Store adapter, defaults to the process-wide SQL store.

    Returns:
        RetrievalResult with citations (possibly empty), memories and the
        query embedding.

    Raises:
        RetrievalError: a fatal step failed or the deadline passed.
        ValueError: invalid config overrides.
    """
    cfg = resolve_config(config or default_rag_config(), config_overrides)
    store = store or get_default_store()

    try:
        return await asyncio.wait_for(
            _retrieve(query, context, cfg, store), timeout=cfg.timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error("RAG retrieval timed out after %gs (company=%s)",
                     cfg.timeout_seconds, context.company_id)
        raise RetrievalError(
            f"Failed to retrieve knowledge: timed out after {cfg.timeout_seconds:g}s"
        ) from None
    except Exception as e:
        logger.error("Error in RAG retrieval (company=%s): %s", context.company_id, e)
        raise RetrievalError(f"Failed to retrieve knowledge: {e}") from e


async def _retrieve(query: str, context: RequestContext, cfg: RAGConfig,
                    store: KnowledgeStore) -> RetrievalResult:
    t0 = time.monotonic()

    # 1) Embed the query
    query_embedding = await _run_step("embedding", embeddings.embed_query, query)

    # 2) Independent retrieval paths
    vector_step = _run_step(
        "vector_search", store.search_knowledge_chunks,
        context.company_id, query_embedding,
        sector=context.sector_filter,
        limit=cfg.max_chunks,
        threshold=cfg.similarity_threshold,
    )
    if cfg.use_structured:
        structured_step = _run_step(
            "structured_retrieval", structured.retrieve_structured,
            query, context, cfg, default=[],
        )
    else:
        structured_step = _skipped([])

    memory_limit = memory_query_limit(cfg)
    if cfg.use_memory and memory_limit > 0:
        memory_step = _run_step(
            "memory_search", store.search_user_memories,
            context.company_id, context.user_id, query_embedding,
            limit=memory_limit, default=[],
        )
    else:
        memory_step = _skipped([])

    vector_hits, structured_hits, memories = await asyncio.gather(
        vector_step, structured_step, memory_step,
    )

    # 3) Merge
    citations = merge_citations(vector_hits or [], structured_hits or [])
    memories = _scope_memories(memories or [], context)

    # 4) Usage counts for surfaced memories
    memory_ids = list(dict.fromkeys(m.id for m in memories if m.id))
    if memory_ids:
        await _run_step(
            "memory_usage_update", store.increment_memory_usage, context.company_id, memory_ids,
        )

    logger.info(
        "RAG retrieval: %d citations (%d vector, %d structured), %d memories in %.0fms",
        len(citations), len(vector_hits or []), len(structured_hits or []),
        len(memories), (time.monotonic() - t0) * 1000,
    )
    return RetrievalResult(
        citations=citations,
        memories=memories,
        query_embedding=query_embedding,
    )


def merge_citations(vector_hits: list[KnowledgeCitation],
                    structured_hits: list[KnowledgeCitation]) -> list[KnowledgeCitation]:
    """Combine vector and structured citations, highest score first.

    Vector hits are deduplicated by chunk id and by near-identical content.
    Structured hits are kept as-is; ties keep structured-first order.
    """
    seen = set()
    unique = []
    for c in sorted(vector_hits, key=lambda c: c.score, reverse=True):
        if c.chunk_id in seen:
            continue
        seen.add(c.chunk_id)
        unique.append(c)
    merged = list(structured_hits) + _deduplicate(unique)
    merged.sort(key=lambda c: c.score, reverse=True)
    return merged


def _scope_memories(memories: list[UserMemory], context: RequestContext) -> list[UserMemory]:
    scoped = [m for m in memories
              if m.company_id == context.company_id and m.user_id == context.user_id]
    if len(scoped) < len(memories):
        logger.warning("Dropped %d memories outside company %s / user %s",
                       len(memories) - len(scoped), context.company_id, context.user_id)
    return scoped


def _deduplicate(results: list[KnowledgeCitation],
                 similarity_threshold: float = DEDUP_SIMILARITY) -> list[KnowledgeCitation]:
    """Remove near-duplicate chunks based on content overlap.

    Uses a simple Jaccard-like word set comparison.
    """
    if not results:
        return results

    deduped = [results[0]]
    seen_word_sets = [_word_set(results[0].content)]

    for r in results[1:]:
        r_words = _word_set(r.content)
        is_dup = False

        for seen in seen_word_sets:
            if not seen or not r_words:
                continue
            union = len(seen | r_words)
            if union > 0 and len(seen & r_words) / union > similarity_threshold:
                is_dup = True
                break

        if not is_dup:
            deduped.append(r)
            seen_word_sets.append(r_words)

    return deduped


def _word_set(text: str) -> set:
    return set(text.lower().split()) if text else set()


async def retrieve_fallback_knowledge(
    context: RequestContext,
    config: RAGConfig | None = None,
    *,
    store: KnowledgeStore | None = None,
) -> list[KnowledgeCitation]:
    """Unranked top-N chunks for the tenant (and sector in sector mode).

    A separate, low-confidence result set for callers whose vector search
    came back empty. Every citation is scored FALLBACK_SCORE.
    """
    cfg = config or default_rag_config()
    store = store or get_default_store()
    try:
        rows = await asyncio.to_thread(
            store.list_knowledge_chunks,
            context.company_id, context.sector_filter, cfg.max_chunks,
        )
    except Exception as e:
        logger.error("Fallback knowledge lookup failed (company=%s): %s", context.company_id, e)
        raise RetrievalError(f"Failed to retrieve knowledge: {e}") from e
    logger.warning("Using unranked fallback knowledge: %d chunks (company=%s)",
                   len(rows), context.company_id)
    return [replace(c, score=FALLBACK_SCORE) for c in rows]

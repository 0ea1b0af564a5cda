"""Heuristic structured retrieval: route a query to business tables.

Walks TOPIC_CATALOG once, runs the lookup of every topic whose trigger
matches (or whose alias is the active sector) and turns the rows into
citations with the topic's fixed confidence score.

A failing topic is logged and contributes nothing; the other topics still
run. Citations from different topics are concatenated, not deduplicated.
"""

from __future__ import annotations

import logging
import time

from context_engine import db
from context_engine.config import RAGConfig
from context_engine.heuristics.catalog import TOPIC_CATALOG, fold_text
from context_engine.heuristics.citations import hit_to_citation
from context_engine.heuristics.queries import fetch_company_names
from context_engine.heuristics.types import TopicQuery, TopicSpec
from context_engine.models import KnowledgeCitation, RequestContext

logger = logging.getLogger(__name__)


def build_topic_query(query: str, context: RequestContext, config: RAGConfig,
                      company_names=()) -> TopicQuery:
    return TopicQuery(
        company_id=context.company_id,
        text=fold_text(query),
        sector=fold_text(context.sector_filter),
        limit=config.structured_limit,
        company_names=tuple(fold_text(n) for n in company_names if n),
    )


def detect_topics(tq: TopicQuery, catalog: list[TopicSpec] | None = None) -> list[TopicSpec]:
    """Topics activated by the query text or by the active sector, in catalog order."""
    matched = []
    for spec in catalog if catalog is not None else TOPIC_CATALOG:
        if (tq.sector and tq.sector in spec.sector_aliases) or spec.trigger(tq):
            matched.append(spec)
    return matched


def _rollback(conn) -> None:
    # A failed statement poisons the Postgres transaction for the next topic
    if db.BACKEND == "postgres":
        try:
            conn.rollback()
        except Exception:
            logger.debug("Rollback after topic failure failed", exc_info=True)


def retrieve_structured(
    query: str,
    context: RequestContext,
    config: RAGConfig,
    conn=None,
) -> list[KnowledgeCitation]:
    """Run every matching topic lookup and return their citations.

    Args:
        query: The user's question.
        context: Tenant/user scope. Rows are always filtered by its company_id.
        config: Supplies structured_limit and per-topic scores.
        conn: Optional open connection; one is opened (and closed) otherwise.
    """
    own_conn = conn is None
    if own_conn:
        conn = db.get_connection()
    t0 = time.monotonic()
    try:
        try:
            company_names = fetch_company_names(conn, context.company_id)
        except Exception as e:
            logger.warning("Company name lookup failed for %s: %s", context.company_id, e)
            _rollback(conn)
            company_names = []

        tq = build_topic_query(query, context, config, company_names)
        topics = detect_topics(tq)
        if not topics:
            return []

        citations: list[KnowledgeCitation] = []
        topic_stats = {}
        for spec in topics:
            score = config.topic_score(spec.topic, spec.default_score)
            try:
                hits = spec.query_fn(conn, tq)
            except Exception as e:
                logger.warning("Structured topic %s failed: %s", spec.topic, e)
                _rollback(conn)
                topic_stats[spec.topic] = "error"
                continue
            citations.extend(hit_to_citation(hit, spec, score) for hit in hits)
            topic_stats[spec.topic] = len(hits)

        logger.info(
            "Structured retrieval: %s (%.0fms)",
            topic_stats, (time.monotonic() - t0) * 1000,
        )
        return citations
    finally:
        if own_conn:
            conn.close()

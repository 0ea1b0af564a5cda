"""Heuristic structured retrieval over business tables."""

from context_engine.heuristics.catalog import TOPIC_CATALOG, TOPICS_BY_NAME, fold_text
from context_engine.heuristics.citations import hit_to_citation
from context_engine.heuristics.retriever import detect_topics, retrieve_structured

__all__ = [
    "TOPIC_CATALOG",
    "TOPICS_BY_NAME",
    "fold_text",
    "hit_to_citation",
    "detect_topics",
    "retrieve_structured",
]

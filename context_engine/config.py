"""Retrieval policy.

``RAGConfig`` is an immutable value passed into every retrieval call.
Defaults come from ``default_rag_config()``; per-request overrides go
through ``resolve_config()`` which returns a new value and never mutates
the base.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Mapping

# Fixed confidence per heuristic topic. Structured rows are ground truth,
# so they outrank typical vector hits until a real relevance model exists.
DEFAULT_TOPIC_SCORES: Mapping[str, float] = MappingProxyType({
    "crm": 0.9,
    "maintenance": 0.9,
    "communication": 0.85,
    "finance": 0.9,
    "projects": 0.85,
    "tasks": 0.85,
    "entity": 0.88,
})


@dataclass(frozen=True)
class RAGConfig:
    """Retrieval limits, thresholds and memory weighting."""
    max_chunks: int = 8
    similarity_threshold: float = 0.7
    use_memory: bool = True
    memory_weight: float = 0.3
    use_structured: bool = True
    structured_limit: int = 20
    topic_scores: Mapping[str, float] = field(default_factory=lambda: DEFAULT_TOPIC_SCORES)
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if self.max_chunks < 1:
            raise ValueError(f"max_chunks must be >= 1, got {self.max_chunks}")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValueError(f"similarity_threshold must be within [0, 1], got {self.similarity_threshold}")
        if not 0.0 <= self.memory_weight <= 1.0:
            raise ValueError(f"memory_weight must be within [0, 1], got {self.memory_weight}")
        if self.structured_limit < 1:
            raise ValueError(f"structured_limit must be >= 1, got {self.structured_limit}")
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")
        for topic, score in self.topic_scores.items():
            if not 0.0 <= score <= 1.0:
                raise ValueError(f"topic score for {topic!r} must be within [0, 1], got {score}")

    def topic_score(self, topic: str, default: float) -> float:
        return self.topic_scores.get(topic, default)

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["topic_scores"] = dict(self.topic_scores)
        return data


_FIELD_NAMES = frozenset(f.name for f in fields(RAGConfig))


def default_rag_config(**overrides) -> RAGConfig:
    """Return the default retrieval policy, optionally with overrides."""
    return resolve_config(RAGConfig(), overrides)


def resolve_config(base: RAGConfig, overrides: Mapping | None = None) -> RAGConfig:
    """Apply per-request overrides to ``base``.

    ``None`` values are ignored so callers can forward optional fields as-is.
    ``topic_scores`` overrides are merged over the base scores.
    """
    if not overrides:
        return base
    unknown = set(overrides) - _FIELD_NAMES
    if unknown:
        raise ValueError(f"Unknown RAG config field(s): {', '.join(sorted(unknown))}")

    changes = {k: v for k, v in overrides.items() if v is not None}
    if "topic_scores" in changes:
        merged = dict(base.topic_scores)
        merged.update(changes["topic_scores"])
        changes["topic_scores"] = MappingProxyType(merged)
    return replace(base, **changes)


def memory_query_limit(config: RAGConfig) -> int:
    """Number of memories to request: ceil(max_chunks * memory_weight).

    Rounded before the ceiling so 10 * 0.3 gives 3, not 4.
    """
    return math.ceil(round(config.max_chunks * config.memory_weight, 9))

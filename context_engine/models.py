"""Data model for retrieval and personalization.

Knowledge chunks and memories are stored; citations, request contexts and
retrieval results are built fresh per request and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

MEMORY_TYPES = ("preference", "context", "rule", "fact")
CONTEXT_MODES = ("general", "sector")


@dataclass
class KnowledgeSource:
    """A document or manual entry that knowledge chunks are cut from."""
    company_id: str
    sector: str
    title: str
    kind: str = "manual"  # url, file, manual
    uri: str | None = None
    status: str = "active"
    id: str | None = None


@dataclass
class KnowledgeChunk:
    """A unit of indexed knowledge."""
    company_id: str
    sector: str
    source_id: str
    chunk_index: int
    content: str
    tags: list[str] = field(default_factory=list)
    embedding: list[float] | None = None
    id: str | None = None


@dataclass
class KnowledgeCitation:
    """Read-only projection of a retrieval hit, used for prompting."""
    chunk_id: str
    source_id: str
    sector: str
    content: str
    score: float
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "chunkId": self.chunk_id,
            "sourceId": self.source_id,
            "sector": self.sector,
            "content": self.content,
            "score": self.score,
            "tags": list(self.tags),
        }


@dataclass
class UserMemory:
    """A durable personalization fact for one user of one tenant.

    ``id`` and ``created_at`` are assigned by the store on save.
    """
    company_id: str
    user_id: str
    memory_type: str
    content: str
    embedding: list[float] | None = None
    confidence: float = 0.5
    usage_count: int = 0
    id: str | None = None
    last_used_at: datetime | None = None
    created_at: datetime | None = None

    def __post_init__(self):
        if self.memory_type not in MEMORY_TYPES:
            raise ValueError(f"Unknown memory type: {self.memory_type!r}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    def to_dict(self, include_embedding: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant": self.company_id,
            "user": self.user_id,
            "memoryType": self.memory_type,
            "content": self.content,
            "confidence": self.confidence,
            "usageCount": self.usage_count,
            "lastUsedAt": self.last_used_at.isoformat() if self.last_used_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if include_embedding:
            data["embedding"] = self.embedding
        return data


@dataclass(frozen=True)
class RequestContext:
    """Per-call identity and scope."""
    company_id: str
    user_id: str
    context_mode: str = "general"
    sector: str | None = None

    def __post_init__(self):
        if not self.company_id:
            raise ValueError("company_id is required")
        if self.context_mode not in CONTEXT_MODES:
            raise ValueError(f"Unknown context mode: {self.context_mode!r}")
        if self.context_mode == "sector" and not self.sector:
            raise ValueError("sector mode requires a sector label")

    @property
    def sector_filter(self) -> str | None:
        """Sector used to filter vector search, only set in sector mode."""
        return self.sector if self.context_mode == "sector" else None


@dataclass
class RetrievalResult:
    citations: list[KnowledgeCitation]
    memories: list[UserMemory]
    query_embedding: list[float]

    def to_dict(self) -> dict:
        return {
            "citations": [c.to_dict() for c in self.citations],
            "memories": [m.to_dict() for m in self.memories],
            "queryEmbedding": self.query_embedding,
        }

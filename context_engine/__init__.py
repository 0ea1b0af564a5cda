"""Context engine: retrieval and prompt construction for the admin assistant."""

__version__ = "1.0.0"

from context_engine.config import RAGConfig, default_rag_config, resolve_config
from context_engine.errors import (
    ContextEngineError,
    DimensionMismatch,
    EmbeddingError,
    FailurePolicy,
    RetrievalError,
    StoreError,
)
from context_engine.models import (
    KnowledgeChunk,
    KnowledgeCitation,
    KnowledgeSource,
    RequestContext,
    RetrievalResult,
    UserMemory,
)
from context_engine.rag.memory import extract_memories, schedule_memory_extraction
from context_engine.rag.prompt import build_enriched_prompt
from context_engine.rag.retrieval import (
    FALLBACK_SCORE,
    retrieve_fallback_knowledge,
    retrieve_knowledge,
)

__all__ = [
    "RAGConfig",
    "default_rag_config",
    "resolve_config",
    "ContextEngineError",
    "DimensionMismatch",
    "EmbeddingError",
    "FailurePolicy",
    "RetrievalError",
    "StoreError",
    "KnowledgeChunk",
    "KnowledgeCitation",
    "KnowledgeSource",
    "RequestContext",
    "RetrievalResult",
    "UserMemory",
    "extract_memories",
    "schedule_memory_extraction",
    "build_enriched_prompt",
    "FALLBACK_SCORE",
    "retrieve_fallback_knowledge",
    "retrieve_knowledge",
]

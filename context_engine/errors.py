"""Exception types and failure policies for the context engine.

Every retrieval call site declares whether a failure is FATAL (the request
aborts with a single RetrievalError) or DEGRADED (logged, contributes an
empty result).
"""

from __future__ import annotations

from enum import Enum


class ContextEngineError(Exception):
    """Base class for all context engine errors."""


class EmbeddingError(ContextEngineError):
    """The embedding provider failed or returned an unusable response."""


class DimensionMismatch(ContextEngineError, ValueError):
    """Two vectors of different lengths were compared."""


class StoreError(ContextEngineError):
    """The knowledge store adapter failed."""


class RetrievalError(ContextEngineError):
    """A retrieval request failed outright."""


class FailurePolicy(str, Enum):
    FATAL = "fatal"
    DEGRADED = "degraded"

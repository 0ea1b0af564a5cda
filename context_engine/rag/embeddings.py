"""Embedding client with batching.

Uses text-embedding-3-large (3072 dimensions). OpenRouter is the primary
provider when OPENROUTER_API_KEY is set (same OpenAI-compatible API),
otherwise OpenAI directly. Batches requests to stay within provider limits.

Failures are not retried here: a failed embedding aborts the retrieval
request that asked for it.
"""

from __future__ import annotations

import logging
import math
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor

from context_engine.errors import DimensionMismatch, EmbeddingError

logger = logging.getLogger(__name__)

_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
_DIMENSIONS = int(os.environ.get("EMBEDDING_DIMENSIONS", "3072"))
_TIMEOUT_SECS = float(os.environ.get("EMBEDDING_TIMEOUT_SECS", "30"))
_MAX_CONCURRENCY = int(os.environ.get("EMBEDDING_MAX_CONCURRENCY", "4"))
_BATCH_SIZE = 100
_MAX_INPUT_CHARS = 8000  # ~2K tokens, well under the 8191 token limit
_MAX_TOKENS = 8192

_WHITESPACE_RE = re.compile(r"\s+")

_client = None
_client_lock = threading.Lock()


def _provider() -> tuple[str, str, str | None]:
    """Return (api_key, model, base_url) for the configured provider."""
    openrouter_key = os.environ.get("OPENROUTER_API_KEY")
    openai_key = os.environ.get("OPENAI_API_KEY")
    if openrouter_key:
        model = os.environ.get("EMBEDDING_MODEL", "openai/text-embedding-3-large")
        return openrouter_key, model, _OPENROUTER_BASE_URL
    if openai_key:
        model = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-large")
        return openai_key, model, None
    raise EmbeddingError("OPENROUTER_API_KEY or OPENAI_API_KEY environment variable is required for embeddings")


def _get_client():
    """Get or create the long-lived provider client (lazy singleton)."""
    global _client
    with _client_lock:
        if _client is None:
            from openai import OpenAI

            api_key, model, base_url = _provider()
            kwargs = {"api_key": api_key, "timeout": _TIMEOUT_SECS, "max_retries": 0}
            if base_url:
                kwargs["base_url"] = base_url
                kwargs["default_headers"] = {
                    "HTTP-Referer": os.environ.get("SITE_URL", "http://localhost:3000"),
                    "X-Title": os.environ.get("SITE_NAME", "CondoGov AdminAssistant"),
                }
            _client = OpenAI(**kwargs)
            logger.info("Embedding client created (model=%s, dimensions=%d)", model, _DIMENSIONS)
        return _client


def get_embedding_dimensions() -> int:
    """Return the embedding vector dimensionality."""
    return _DIMENSIONS


def get_model_info() -> dict:
    try:
        _, model, base_url = _provider()
        provider = "openrouter" if base_url else "openai"
    except EmbeddingError:
        model, provider = None, None
    return {
        "model": model,
        "provider": provider,
        "dimensions": _DIMENSIONS,
        "max_tokens": _MAX_TOKENS,
        "batch_size": _BATCH_SIZE,
    }


def preprocess_text(text: str) -> str:
    """Trim, collapse whitespace and newlines, and cap length for the provider."""
    return _WHITESPACE_RE.sub(" ", text.strip())[:_MAX_INPUT_CHARS]


def _embed_batch(batch: list[str]) -> list[list[float]]:
    _, model, _ = _provider()
    response = _get_client().embeddings.create(
        model=model,
        input=batch,
        dimensions=_DIMENSIONS,
    )
    data = sorted(response.data, key=lambda item: item.index)
    if len(data) != len(batch):
        raise EmbeddingError(f"Provider returned {len(data)} embeddings for {len(batch)} inputs")
    return [list(item.embedding) for item in data]


def _embed_all(texts: list[str], failure_label: str) -> list[list[float]]:
    cleaned = [preprocess_text(t) for t in texts]
    batches = [cleaned[i:i + _BATCH_SIZE] for i in range(0, len(cleaned), _BATCH_SIZE)]

    try:
        if len(batches) == 1 or _MAX_CONCURRENCY <= 1:
            results = [_embed_batch(b) for b in batches]
        else:
            with ThreadPoolExecutor(max_workers=min(_MAX_CONCURRENCY, len(batches))) as pool:
                results = list(pool.map(_embed_batch, batches))
    except EmbeddingError:
        raise
    except Exception as e:
        logger.error("Error generating %s: %s", failure_label, e)
        raise EmbeddingError(f"Failed to generate {failure_label}: {e}") from e

    if len(batches) > 1:
        logger.info("Embedded %d texts in %d batches", len(texts), len(batches))
    return [vec for batch in results for vec in batch]


def embed_texts(texts: list[str]) -> list[list[float]]:
    """Embed a list of texts.

    Inputs are preprocessed and split into sub-batches of 100. Sub-batches
    run through a bounded thread pool; the result order matches ``texts``.

    Raises:
        EmbeddingError: provider misconfigured or the call failed.
    """
    if not texts:
        return []
    return _embed_all(texts, "batch embeddings")


def embed_query(text: str) -> list[float]:
    """Embed a single text (query or memory sentence)."""
    if not text or not text.strip():
        raise EmbeddingError("Failed to generate embedding: empty text")
    return _embed_all([text], "embedding")[0]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector has zero length.

    Raises:
        DimensionMismatch: when the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatch(f"Vector dimension mismatch: {len(a)} vs {len(b)}")
    dot = math.fsum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(math.fsum(x * x for x in a))
    norm_b = math.sqrt(math.fsum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))

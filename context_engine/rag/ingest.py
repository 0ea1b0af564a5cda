"""Knowledge ingestion: text → chunks → embeddings → store.

Re-ingesting a (company, sector, title) replaces that source's chunks.
"""

from __future__ import annotations

import logging
import time

from context_engine.models import KnowledgeChunk, KnowledgeSource
from context_engine.rag import embeddings
from context_engine.rag.chunker import chunk_text
from context_engine.rag.store import get_default_store

logger = logging.getLogger(__name__)


def ingest_text(
    company_id: str,
    sector: str,
    title: str,
    text: str,
    tags: list[str] | None = None,
    *,
    store=None,
    kind: str = "manual",
    uri: str | None = None,
) -> int:
    """Chunk, embed and store one piece of knowledge.

    Embedding happens before anything is written, so a provider failure
    leaves the store untouched.

    Returns:
        Number of chunks stored (0 when the text is blank).

    Raises:
        EmbeddingError: the provider call failed.
        StoreError: the store rejected the write.
    """
    t0 = time.monotonic()
    pieces = [p for p in chunk_text(text) if p]
    if not pieces:
        logger.warning("Nothing to ingest for %r (%s)", title, sector)
        return 0

    vectors = embeddings.embed_texts(pieces)

    store = store or get_default_store()
    source_id = store.upsert_source(KnowledgeSource(
        company_id=company_id, sector=sector, title=title, kind=kind, uri=uri,
    ))
    replaced = store.delete_chunks(company_id, source_id)
    if replaced:
        logger.info("Replacing %d existing chunks of %r", replaced, title)

    chunks = [
        KnowledgeChunk(
            company_id=company_id,
            sector=sector,
            source_id=source_id,
            chunk_index=i,
            content=piece,
            tags=list(tags or []),
            embedding=vector,
        )
        for i, (piece, vector) in enumerate(zip(pieces, vectors))
    ]
    stored = store.insert_chunks(chunks)
    logger.info("Ingested %r (%s): %d chunks in %.1fs",
                title, sector, stored, time.monotonic() - t0)
    return stored

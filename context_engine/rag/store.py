"""Knowledge and memory store adapters.

``KnowledgeStore`` is the boundary the retrieval orchestrator talks to.
``SqlKnowledgeStore`` backs it with PostgreSQL + pgvector (or DuckDB
locally, via context_engine.db); ``InMemoryKnowledgeStore`` keeps
everything in process for tests and demos.

Every read and write is scoped by company_id, and memory reads also by
user_id, so one tenant never sees another tenant's rows.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Protocol, runtime_checkable

from context_engine.errors import StoreError
from context_engine.models import (
    KnowledgeChunk,
    KnowledgeCitation,
    KnowledgeSource,
    UserMemory,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    # Stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


@runtime_checkable
class KnowledgeStore(Protocol):
    """Storage operations the retrieval pipeline depends on."""

    def search_knowledge_chunks(
        self,
        company_id: str,
        query_embedding: list[float],
        sector: str | None = None,
        limit: int = 8,
        threshold: float = 0.7,
    ) -> list[KnowledgeCitation]: ...

    def list_knowledge_chunks(
        self, company_id: str, sector: str | None = None, limit: int = 8,
    ) -> list[KnowledgeCitation]: ...

    def search_user_memories(
        self,
        company_id: str,
        user_id: str,
        query_embedding: list[float],
        limit: int = 3,
    ) -> list[UserMemory]: ...

    def update_memory_usage(self, company_id: str, memory_id: str) -> None: ...

    def increment_memory_usage(self, company_id: str, memory_ids: Iterable[str]) -> int: ...

    def save_user_memory(self, memory: UserMemory) -> UserMemory: ...


# ── SQL store ──────────────────────────────────────────────────────

_CHUNK_COLUMNS = "id, source_id, sector, content, tags"
_MEMORY_COLUMNS = (
    "id, company_id, user_id, memory_type, content, embedding, "
    "confidence, usage_count, last_used_at, created_at"
)


def _row_to_citation(row, score: float) -> KnowledgeCitation:
    return KnowledgeCitation(
        chunk_id=row[0],
        source_id=row[1],
        sector=row[2],
        content=row[3],
        score=score,
        tags=list(row[4] or []),
    )


def _row_to_memory(row) -> UserMemory:
    from context_engine import db

    return UserMemory(
        id=row[0],
        company_id=row[1],
        user_id=row[2],
        memory_type=row[3],
        content=row[4],
        embedding=db.parse_vector(row[5]),
        confidence=float(row[6] or 0),
        usage_count=int(row[7] or 0),
        last_used_at=row[8],
        created_at=row[9],
    )


class SqlKnowledgeStore:
    """Store adapter over the configured database backend.

    Each call opens its own connection (pooled on PostgreSQL), so one
    instance can be shared across worker threads.
    """

    @contextmanager
    def _connection(self, action: str):
        from context_engine import db

        try:
            conn = db.get_connection()
        except Exception as e:
            raise StoreError(f"{action} failed: {e}") from e
        try:
            yield conn
            if db.BACKEND == "postgres":
                conn.commit()
        except StoreError:
            raise
        except Exception as e:
            logger.error("%s failed: %s", action, e)
            raise StoreError(f"{action} failed: {e}") from e
        finally:
            conn.close()

    # -- retrieval ---------------------------------------------------

    def search_knowledge_chunks(self, company_id, query_embedding, sector=None,
                                limit=8, threshold=0.7):
        from context_engine import db

        sector_clause = "AND sector = %s" if sector else ""
        sql = (
            f"SELECT {_CHUNK_COLUMNS}, score FROM ("
            f"  SELECT {_CHUNK_COLUMNS}, {db.similarity_sql('embedding')} AS score"
            f"  FROM knowledge_chunks"
            f"  WHERE company_id = %s AND embedding IS NOT NULL {sector_clause}"
            f") AS scored "
            f"WHERE score >= %s "
            f"ORDER BY score DESC "
            f"LIMIT %s"
        )
        params = [db.vector_param(query_embedding), company_id]
        if sector:
            params.append(sector)
        params += [threshold, limit]

        with self._connection("Knowledge search") as conn:
            rows = db.execute(conn, sql, params)
        return [_row_to_citation(r, float(r[5])) for r in rows]

    def list_knowledge_chunks(self, company_id, sector=None, limit=8):
        from context_engine import db

        sector_clause = "AND sector = %s" if sector else ""
        params = [company_id] + ([sector] if sector else []) + [limit]
        sql = (
            f"SELECT {_CHUNK_COLUMNS} FROM knowledge_chunks "
            f"WHERE company_id = %s {sector_clause} "
            f"ORDER BY created_at DESC, chunk_index "
            f"LIMIT %s"
        )
        with self._connection("Knowledge listing") as conn:
            rows = db.execute(conn, sql, params)
        return [_row_to_citation(r, 0.0) for r in rows]

    def search_user_memories(self, company_id, user_id, query_embedding, limit=3):
        from context_engine import db

        if limit < 1:
            return []
        sql = (
            f"SELECT {_MEMORY_COLUMNS} FROM ("
            f"  SELECT {_MEMORY_COLUMNS}, {db.similarity_sql('embedding')} AS score"
            f"  FROM user_memories"
            f"  WHERE company_id = %s AND user_id = %s AND embedding IS NOT NULL"
            f") AS scored "
            f"ORDER BY score DESC "
            f"LIMIT %s"
        )
        params = [db.vector_param(query_embedding), company_id, user_id, limit]
        with self._connection("Memory search") as conn:
            rows = db.execute(conn, sql, params)
        return [_row_to_memory(r) for r in rows]

    def update_memory_usage(self, company_id, memory_id):
        self.increment_memory_usage(company_id, [memory_id])

    def increment_memory_usage(self, company_id, memory_ids):
        """Add one to usage_count for each distinct id in a single UPDATE."""
        from context_engine import db

        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return 0
        placeholders = ", ".join(["%s"] * len(ids))
        sql = (
            "UPDATE user_memories "
            "SET usage_count = usage_count + 1, last_used_at = %s "
            f"WHERE company_id = %s AND id IN ({placeholders})"
        )
        with self._connection("Memory usage update") as conn:
            return db.execute_count(conn, sql, [_now(), company_id] + ids)

    def save_user_memory(self, memory):
        from context_engine import db

        saved = replace(memory, id=memory.id or _new_id(), created_at=memory.created_at or _now())
        sql = (
            f"INSERT INTO user_memories ({_MEMORY_COLUMNS}) "
            f"VALUES (%s, %s, %s, %s, %s, {db.vector_placeholder()}, %s, %s, %s, %s)"
        )
        params = [
            saved.id, saved.company_id, saved.user_id, saved.memory_type,
            saved.content, db.vector_param(saved.embedding), saved.confidence,
            saved.usage_count, saved.last_used_at, saved.created_at,
        ]
        with self._connection("Memory save") as conn:
            db.execute(conn, sql, params)
        return saved

    # -- ingestion ---------------------------------------------------

    def upsert_source(self, source: KnowledgeSource) -> str:
        """Return the id of the source matching (company, sector, title), creating it if needed."""
        from context_engine import db

        now = _now()
        with self._connection("Source upsert") as conn:
            rows = db.execute(
                conn,
                "SELECT id FROM knowledge_sources "
                "WHERE company_id = %s AND sector = %s AND title = %s",
                [source.company_id, source.sector, source.title],
            )
            if rows:
                source_id = rows[0][0]
                db.execute(
                    conn,
                    "UPDATE knowledge_sources SET kind = %s, uri = %s, status = %s, "
                    "updated_at = %s WHERE id = %s",
                    [source.kind, source.uri, source.status, now, source_id],
                )
                return source_id
            source_id = source.id or _new_id()
            db.execute(
                conn,
                "INSERT INTO knowledge_sources "
                "(id, company_id, sector, title, kind, uri, status, created_at, updated_at) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)",
                [source_id, source.company_id, source.sector, source.title,
                 source.kind, source.uri, source.status, now, now],
            )
            return source_id

    def insert_chunks(self, chunks: list[KnowledgeChunk]) -> int:
        from context_engine import db

        if not chunks:
            return 0
        now = _now()
        sql = (
            "INSERT INTO knowledge_chunks "
            "(id, company_id, sector, source_id, chunk_index, content, embedding, tags, created_at) "
            f"VALUES (%s, %s, %s, %s, %s, %s, {db.vector_placeholder()}, %s, %s)"
        )
        with self._connection("Chunk insert") as conn:
            for chunk in chunks:
                chunk.id = chunk.id or _new_id()
                db.execute(conn, sql, [
                    chunk.id, chunk.company_id, chunk.sector, chunk.source_id,
                    chunk.chunk_index, chunk.content.replace("\x00", ""),
                    db.vector_param(chunk.embedding), list(chunk.tags), now,
                ])
        logger.info("Inserted %d chunks", len(chunks))
        return len(chunks)

    def update_chunk_tags(self, company_id: str, chunk_id: str, tags: list[str]) -> bool:
        from context_engine import db

        with self._connection("Chunk tag update") as conn:
            count = db.execute_count(
                conn,
                "UPDATE knowledge_chunks SET tags = %s WHERE company_id = %s AND id = %s",
                [list(tags), company_id, chunk_id],
            )
        return count != 0

    def delete_chunks(self, company_id: str, source_id: str) -> int:
        """Delete the chunks of one source, keeping the source row."""
        from context_engine import db

        with self._connection("Chunk delete") as conn:
            return db.execute_count(
                conn,
                "DELETE FROM knowledge_chunks WHERE company_id = %s AND source_id = %s",
                [company_id, source_id],
            )

    def delete_source(self, company_id: str, source_id: str) -> int:
        """Delete a source and its chunks. Returns the number of chunks removed."""
        from context_engine import db

        deleted = self.delete_chunks(company_id, source_id)
        with self._connection("Source delete") as conn:
            db.execute_count(
                conn,
                "DELETE FROM knowledge_sources WHERE company_id = %s AND id = %s",
                [company_id, source_id],
            )
        logger.info("Deleted source %s (%d chunks)", source_id, deleted)
        return deleted

    def clear_company(self, company_id: str) -> int:
        """Delete all knowledge for a tenant (re-seeding). Memories are kept."""
        from context_engine import db

        with self._connection("Knowledge clear") as conn:
            deleted = db.execute_count(
                conn, "DELETE FROM knowledge_chunks WHERE company_id = %s", [company_id],
            )
            db.execute_count(
                conn, "DELETE FROM knowledge_sources WHERE company_id = %s", [company_id],
            )
        logger.info("Cleared %d chunks for company %s", deleted, company_id)
        return deleted

    def get_stats(self, company_id: str | None = None) -> dict:
        from context_engine import db

        where = "WHERE company_id = %s" if company_id else ""
        params = [company_id] if company_id else None
        with self._connection("Stats") as conn:
            total = db.execute(conn, f"SELECT COUNT(*) FROM knowledge_chunks {where}", params)[0][0]
            by_sector = db.execute(
                conn,
                f"SELECT sector, COUNT(*) FROM knowledge_chunks {where} "
                f"GROUP BY sector ORDER BY COUNT(*) DESC",
                params,
            )
            sources = db.execute(conn, f"SELECT COUNT(*) FROM knowledge_sources {where}", params)[0][0]
            memories = db.execute(conn, f"SELECT COUNT(*) FROM user_memories {where}", params)[0][0]
        return {
            "total_chunks": int(total),
            "by_sector": {sector: int(n) for sector, n in by_sector},
            "sources": int(sources),
            "memories": int(memories),
        }


# ── In-memory store ────────────────────────────────────────────────

class InMemoryKnowledgeStore:
    """Thread-safe in-process store with the same semantics as SqlKnowledgeStore."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sources: dict[str, KnowledgeSource] = {}
        self._chunks: dict[str, KnowledgeChunk] = {}
        self._memories: dict[str, UserMemory] = {}

    def search_knowledge_chunks(self, company_id, query_embedding, sector=None,
                                limit=8, threshold=0.7):
        from context_engine.rag.embeddings import cosine_similarity

        with self._lock:
            candidates = [
                c for c in self._chunks.values()
                if c.company_id == company_id and c.embedding is not None
                and (not sector or c.sector == sector)
            ]
        scored = []
        for chunk in candidates:
            score = cosine_similarity(query_embedding, chunk.embedding)
            if score >= threshold:
                scored.append(_chunk_citation(chunk, score))
        scored.sort(key=lambda c: c.score, reverse=True)
        return scored[:limit]

    def list_knowledge_chunks(self, company_id, sector=None, limit=8):
        with self._lock:
            chunks = [
                c for c in self._chunks.values()
                if c.company_id == company_id and (not sector or c.sector == sector)
            ]
        return [_chunk_citation(c, 0.0) for c in chunks[:limit]]

    def search_user_memories(self, company_id, user_id, query_embedding, limit=3):
        from context_engine.rag.embeddings import cosine_similarity

        if limit < 1:
            return []
        with self._lock:
            candidates = [
                m for m in self._memories.values()
                if m.company_id == company_id and m.user_id == user_id
                and m.embedding is not None
            ]
        candidates.sort(key=lambda m: cosine_similarity(query_embedding, m.embedding), reverse=True)
        return [replace(m) for m in candidates[:limit]]

    def update_memory_usage(self, company_id, memory_id):
        self.increment_memory_usage(company_id, [memory_id])

    def increment_memory_usage(self, company_id, memory_ids):
        now = _now()
        count = 0
        with self._lock:
            for memory_id in dict.fromkeys(memory_ids):
                memory = self._memories.get(memory_id)
                if memory is None or memory.company_id != company_id:
                    continue
                memory.usage_count += 1
                memory.last_used_at = now
                count += 1
        return count

    def save_user_memory(self, memory):
        saved = replace(memory, id=memory.id or _new_id(), created_at=memory.created_at or _now())
        with self._lock:
            self._memories[saved.id] = saved
        return replace(saved)

    def get_memory(self, memory_id: str) -> UserMemory | None:
        with self._lock:
            memory = self._memories.get(memory_id)
            return replace(memory) if memory else None

    def upsert_source(self, source: KnowledgeSource) -> str:
        with self._lock:
            for existing in self._sources.values():
                if (existing.company_id, existing.sector, existing.title) == (
                        source.company_id, source.sector, source.title):
                    return existing.id
            source_id = source.id or _new_id()
            self._sources[source_id] = replace(source, id=source_id)
            return source_id

    def insert_chunks(self, chunks: list[KnowledgeChunk]) -> int:
        with self._lock:
            for chunk in chunks:
                chunk.id = chunk.id or _new_id()
                self._chunks[chunk.id] = chunk
        return len(chunks)

    def update_chunk_tags(self, company_id: str, chunk_id: str, tags: list[str]) -> bool:
        with self._lock:
            chunk = self._chunks.get(chunk_id)
            if chunk is None or chunk.company_id != company_id:
                return False
            chunk.tags = list(tags)
            return True

    def delete_chunks(self, company_id: str, source_id: str) -> int:
        with self._lock:
            doomed = [cid for cid, c in self._chunks.items()
                      if c.company_id == company_id and c.source_id == source_id]
            for cid in doomed:
                del self._chunks[cid]
        return len(doomed)

    def delete_source(self, company_id: str, source_id: str) -> int:
        deleted = self.delete_chunks(company_id, source_id)
        with self._lock:
            source = self._sources.get(source_id)
            if source is not None and source.company_id == company_id:
                del self._sources[source_id]
        return deleted

    def clear_company(self, company_id: str) -> int:
        with self._lock:
            doomed = [cid for cid, c in self._chunks.items() if c.company_id == company_id]
            for cid in doomed:
                del self._chunks[cid]
            for sid in [s for s, src in self._sources.items() if src.company_id == company_id]:
                del self._sources[sid]
        return len(doomed)

    def get_stats(self, company_id: str | None = None) -> dict:
        with self._lock:
            chunks = [c for c in self._chunks.values() if not company_id or c.company_id == company_id]
            sources = [s for s in self._sources.values() if not company_id or s.company_id == company_id]
            memories = [m for m in self._memories.values() if not company_id or m.company_id == company_id]
        by_sector: dict[str, int] = {}
        for chunk in chunks:
            by_sector[chunk.sector] = by_sector.get(chunk.sector, 0) + 1
        return {
            "total_chunks": len(chunks),
            "by_sector": by_sector,
            "sources": len(sources),
            "memories": len(memories),
        }


def _chunk_citation(chunk: KnowledgeChunk, score: float) -> KnowledgeCitation:
    return KnowledgeCitation(
        chunk_id=chunk.id,
        source_id=chunk.source_id,
        sector=chunk.sector,
        content=chunk.content,
        score=score,
        tags=list(chunk.tags),
    )


# ── Default store ──────────────────────────────────────────────────

_default_store = None
_default_lock = threading.Lock()


def get_default_store() -> KnowledgeStore:
    """Return the process-wide SQL store (lazy singleton)."""
    global _default_store
    with _default_lock:
        if _default_store is None:
            _default_store = SqlKnowledgeStore()
        return _default_store

"""Database connection for the context engine.

Supports two backends:
  - PostgreSQL + pgvector (production), when DATABASE_URL is set
  - DuckDB (local development and tests), fallback when no DATABASE_URL

Callers write SQL with %s placeholders; execute() and execute_count()
convert them for DuckDB. The vector column and the similarity expression
are the only backend-specific pieces, see vector_type() / similarity_sql().
"""

import atexit
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

# ── Backend detection ─────────────────────────────────────────────
DATABASE_URL = os.environ.get("DATABASE_URL")

# DuckDB fallback path (local development)
_DUCKDB_PATH = os.environ.get(
    "CONTEXT_ENGINE_DB",
    str(Path(__file__).parent.parent / "data" / "context_engine.duckdb"),
)

# Which backend are we using?
BACKEND = "postgres" if DATABASE_URL else "duckdb"

STATEMENT_TIMEOUT = os.environ.get("DB_STATEMENT_TIMEOUT", "30s")
EMBEDDING_COLUMN_DIMENSIONS = int(os.environ.get("EMBEDDING_DIMENSIONS", "3072"))


# ── PostgreSQL Connection Pool ────────────────────────────────────

# Lazy singleton, created on first get_connection() call
_pool = None


def _get_pool():
    """Get or create the PostgreSQL connection pool (lazy singleton)."""
    global _pool
    if _pool is None:
        import psycopg2.pool
        _maxconn = int(os.environ.get("DB_POOL_MAX", "20"))
        _pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=_maxconn,
            dsn=DATABASE_URL,
            connect_timeout=10,
        )
        logger.info("PostgreSQL connection pool created (maxconn=%d)", _maxconn)
    return _pool


def _close_pool():
    """Close the connection pool on shutdown."""
    global _pool
    if _pool is not None:
        try:
            _pool.closeall()
            logger.info("PostgreSQL connection pool closed")
        except Exception as e:
            logger.warning("Error closing pool: %s", e)
        _pool = None


atexit.register(_close_pool)


class _PooledConnection:
    """Wrapper around a psycopg2 connection that returns it to the pool on close.

    Instead of destroying the connection, .close() rolls back any uncommitted
    transaction and returns the connection to the pool via putconn().
    """

    def __init__(self, conn, pool):
        self._conn = conn
        self._pool = pool

    def close(self):
        """Roll back uncommitted work and return connection to pool."""
        if self._conn is not None:
            try:
                self._conn.rollback()
            except Exception:
                logger.debug("Rollback before putconn failed", exc_info=True)
            self._pool.putconn(self._conn)
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __getattr__(self, name):
        return getattr(self._conn, name)

    def __setattr__(self, name, value):
        if name in ("_conn", "_pool"):
            super().__setattr__(name, value)
        else:
            setattr(self._conn, name, value)


def get_connection(db_path: str | None = None):
    """Get a database connection (Postgres or DuckDB).

    Args:
        db_path: Optional DuckDB file path override.
                 Ignored when BACKEND is 'postgres'.

    Returns a connection object. Caller is responsible for closing it.
    Postgres connections carry a statement_timeout so no single query can
    outlive the retrieval deadline by much.
    """
    if BACKEND == "postgres" and not db_path:
        try:
            pool = _get_pool()
            raw_conn = pool.getconn()
            with raw_conn.cursor() as cur:
                cur.execute("SET statement_timeout = %s", (STATEMENT_TIMEOUT,))
            raw_conn.commit()
            return _PooledConnection(raw_conn, pool)
        except Exception as e:
            logger.error("Postgres pool connection failed: %s", e)
            raise
    else:
        import duckdb
        path = db_path or _DUCKDB_PATH
        if path != ":memory:":
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        return duckdb.connect(path)


def execute(conn, sql: str, params=None) -> list:
    """Execute SQL on an open connection and return all rows.

    SQL uses %s placeholders; converted to ? for DuckDB.
    """
    if BACKEND == "postgres":
        with conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.fetchall() if cur.description else []
    if params:
        result = conn.execute(sql.replace("%s", "?"), params)
    else:
        result = conn.execute(sql)
    return result.fetchall() if result.description else []


def execute_count(conn, sql: str, params=None) -> int:
    """Execute a write on an open connection and return the affected row count (-1 if unknown)."""
    if BACKEND == "postgres":
        with conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.rowcount
    if params:
        result = conn.execute(sql.replace("%s", "?"), params)
    else:
        result = conn.execute(sql)
    row = result.fetchone() if result.description else None
    return int(row[0]) if row and isinstance(row[0], int) else -1


# ── Vector helpers ─────────────────────────────────────────────────

def vector_type() -> str:
    """Column type for embeddings on the active backend."""
    if BACKEND == "postgres":
        return f"vector({EMBEDDING_COLUMN_DIMENSIONS})"
    return "DOUBLE[]"


def vector_param(embedding: list[float] | None):
    """Bind value for an embedding parameter (pgvector accepts its text form)."""
    if embedding is None:
        return None
    if BACKEND == "postgres":
        return "[" + ",".join(repr(float(x)) for x in embedding) + "]"
    return [float(x) for x in embedding]


def vector_placeholder() -> str:
    """Placeholder with the cast each backend needs for an embedding parameter."""
    return "%s::vector" if BACKEND == "postgres" else "%s::DOUBLE[]"


def similarity_sql(column: str = "embedding") -> str:
    """Cosine similarity between ``column`` and one embedding parameter."""
    if BACKEND == "postgres":
        return f"(1 - ({column} <=> %s::vector))"
    return f"list_cosine_similarity({column}, %s::DOUBLE[])"


def parse_vector(value) -> list[float] | None:
    """Normalize an embedding read back from either backend into a float list."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip("[]")
        return [float(x) for x in value.split(",") if x.strip()]
    return [float(x) for x in value]


# ── Schema ─────────────────────────────────────────────────────────

_PRIORITY_CHECK = "CHECK (priority IN ('urgent', 'high', 'medium', 'low'))"


def init_schema(conn) -> None:
    """Create knowledge, memory and business tables if they don't exist.

    DDL is shared by both backends apart from the embedding column type.
    """
    statements = []
    if BACKEND == "postgres":
        statements.append("CREATE EXTENSION IF NOT EXISTS vector")

    vec = vector_type()
    statements += [
        """
        CREATE TABLE IF NOT EXISTS knowledge_sources (
            id TEXT PRIMARY KEY,
            company_id TEXT NOT NULL,
            sector TEXT NOT NULL,
            title TEXT NOT NULL,
            kind TEXT NOT NULL DEFAULT 'manual' CHECK (kind IN ('url', 'file', 'manual')),
            uri TEXT,
            status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'disabled')),
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS knowledge_chunks (
            id TEXT PRIMARY KEY,
            company_id TEXT NOT NULL,
            sector TEXT NOT NULL,
            source_id TEXT NOT NULL,
            chunk_index INTEGER NOT NULL,
            content TEXT NOT NULL,
            embedding {vec},
            tags TEXT[],
            created_at TIMESTAMP NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS user_memories (
            id TEXT PRIMARY KEY,
            company_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            memory_type TEXT NOT NULL CHECK (memory_type IN ('preference', 'context', 'rule', 'fact')),
            content TEXT NOT NULL,
            embedding {vec},
            confidence FLOAT8 NOT NULL DEFAULT 0.5,
            usage_count INTEGER NOT NULL DEFAULT 0,
            last_used_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS companies (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            trade_name TEXT,
            document TEXT,
            city TEXT,
            state TEXT,
            units INTEGER,
            status TEXT NOT NULL DEFAULT 'active',
            created_at TIMESTAMP NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS crm_deals (
            id TEXT PRIMARY KEY,
            company_id TEXT NOT NULL,
            title TEXT NOT NULL,
            client_name TEXT,
            stage TEXT,
            status TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'medium' {_PRIORITY_CHECK},
            value FLOAT8,
            expected_close_date DATE,
            created_at TIMESTAMP NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS maintenance_orders (
            id TEXT PRIMARY KEY,
            company_id TEXT NOT NULL,
            title TEXT NOT NULL,
            condominium_name TEXT,
            equipment TEXT,
            status TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'medium' {_PRIORITY_CHECK},
            scheduled_date DATE,
            created_at TIMESTAMP NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS communications (
            id TEXT PRIMARY KEY,
            company_id TEXT NOT NULL,
            subject TEXT NOT NULL,
            channel TEXT,
            audience TEXT,
            status TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'medium' {_PRIORITY_CHECK},
            publish_date DATE,
            created_at TIMESTAMP NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS financial_entries (
            id TEXT PRIMARY KEY,
            company_id TEXT NOT NULL,
            description TEXT NOT NULL,
            kind TEXT NOT NULL CHECK (kind IN ('receivable', 'payable')),
            counterparty TEXT,
            amount FLOAT8 NOT NULL,
            status TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'medium' {_PRIORITY_CHECK},
            due_date DATE,
            created_at TIMESTAMP NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            company_id TEXT NOT NULL,
            name TEXT NOT NULL,
            status TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'medium' {_PRIORITY_CHECK},
            completion FLOAT8 DEFAULT 0,
            budget FLOAT8,
            spent FLOAT8,
            end_date DATE,
            created_at TIMESTAMP NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            company_id TEXT NOT NULL,
            title TEXT NOT NULL,
            assignee TEXT,
            status TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'medium' {_PRIORITY_CHECK},
            due_date DATE,
            created_at TIMESTAMP NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_knowledge_sources_company_sector ON knowledge_sources (company_id, sector)",
        "CREATE INDEX IF NOT EXISTS idx_knowledge_chunks_company_sector ON knowledge_chunks (company_id, sector)",
        "CREATE INDEX IF NOT EXISTS idx_user_memories_company_user ON user_memories (company_id, user_id)",
    ]
    for table in ("crm_deals", "maintenance_orders", "communications",
                  "financial_entries", "projects", "tasks"):
        statements.append(
            f"CREATE INDEX IF NOT EXISTS idx_{table}_company_status ON {table} (company_id, status)"
        )

    for sql in statements:
        execute(conn, sql)
    if BACKEND == "postgres":
        conn.commit()
    logger.info("Schema ensured (%s backend)", BACKEND)

"""Root-level test conftest: fixtures shared across all test files.

Database isolation: each pytest session gets its own temp DuckDB file with
the full schema. Opening the real local database file is blocked.
No test needs PostgreSQL or network access; the embedding provider is
always patched.
"""
import os
from datetime import datetime

import pytest

BUSINESS_TABLES = (
    "companies", "crm_deals", "maintenance_orders", "communications",
    "financial_entries", "projects", "tasks",
)
KNOWLEDGE_TABLES = ("knowledge_chunks", "knowledge_sources", "user_memories")


# ---------------------------------------------------------------------------
# Session-scoped DB isolation fixture
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True, scope="session")
def _isolated_test_db(tmp_path_factory):
    """Point context_engine.db at a per-session temp DuckDB."""
    import context_engine.db as db_mod

    original_backend = db_mod.BACKEND
    original_url = os.environ.get("DATABASE_URL")
    original_duckdb_path = db_mod._DUCKDB_PATH

    # Guard: block access to the real DuckDB file
    _real_db = os.path.abspath(original_duckdb_path)
    import duckdb as _duckdb_mod
    _original_connect = _duckdb_mod.connect

    def _guarded_connect(database=":memory:", *args, **kwargs):
        if database not in (":memory:", ":default:"):
            if os.path.abspath(database) == _real_db:
                raise RuntimeError(
                    f"TEST GUARD: Attempted to open the real DuckDB file ({_real_db}) "
                    f"during tests. Use the temp DB from _isolated_test_db instead."
                )
        return _original_connect(database, *args, **kwargs)

    _duckdb_mod.connect = _guarded_connect

    db_path = str(tmp_path_factory.mktemp("duckdb") / "test_context_engine.duckdb")
    db_mod._DUCKDB_PATH = db_path
    db_mod.BACKEND = "duckdb"
    os.environ.pop("DATABASE_URL", None)
    db_mod.DATABASE_URL = None

    conn = db_mod.get_connection()
    try:
        db_mod.init_schema(conn)
    finally:
        conn.close()

    try:
        yield db_path
    finally:
        _duckdb_mod.connect = _original_connect
        db_mod._DUCKDB_PATH = original_duckdb_path
        db_mod.BACKEND = original_backend
        db_mod.DATABASE_URL = original_url
        if original_url:
            os.environ["DATABASE_URL"] = original_url


# ---------------------------------------------------------------------------
# Function-scoped fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _restore_db_path():
    """Save and restore context_engine.db backend settings around every test."""
    import context_engine.db as db_mod

    saved = (db_mod._DUCKDB_PATH, db_mod.BACKEND, db_mod.DATABASE_URL)
    yield
    db_mod._DUCKDB_PATH, db_mod.BACKEND, db_mod.DATABASE_URL = saved


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Drop the cached embedding client and default store between tests."""
    import context_engine.rag.embeddings as emb_mod
    import context_engine.rag.store as store_mod

    emb_mod._client = None
    store_mod._default_store = None
    yield
    emb_mod._client = None
    store_mod._default_store = None


@pytest.fixture
def clean_db():
    """Empty every table in the session DB and return a connection factory."""
    from context_engine import db

    conn = db.get_connection()
    try:
        for table in KNOWLEDGE_TABLES + BUSINESS_TABLES:
            conn.execute(f"DELETE FROM {table}")
    finally:
        conn.close()
    return db.get_connection


@pytest.fixture
def insert_rows(clean_db):
    """Insert dict rows into a table of the clean session DB.

    ``created_at`` defaults to 2026-01-01 when a row doesn't set it.
    """
    def _insert(table: str, *rows: dict):
        conn = clean_db()
        try:
            for row in rows:
                row = {"created_at": datetime(2026, 1, 1), **row}
                cols = ", ".join(row)
                marks = ", ".join(["?"] * len(row))
                conn.execute(f"INSERT INTO {table} ({cols}) VALUES ({marks})", list(row.values()))
        finally:
            conn.close()

    return _insert

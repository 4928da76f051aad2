"""SQLite database connection and schema initialization."""

from pathlib import Path

import aiosqlite

# Global connection holder
_db_connection: aiosqlite.Connection | None = None


async def init_database(db_path: str) -> None:
    """Initialize the database connection and create schema."""
    global _db_connection

    # Ensure the data directory exists
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _db_connection = await aiosqlite.connect(db_path)
    _db_connection.row_factory = aiosqlite.Row

    await _db_connection.execute("PRAGMA foreign_keys = ON")

    await _create_schema(_db_connection)


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection
    if _db_connection:
        await _db_connection.close()
        _db_connection = None


async def get_db() -> aiosqlite.Connection:
    """Get the database connection."""
    if _db_connection is None:
        raise RuntimeError("Database not initialized. Call init_database first.")
    return _db_connection


async def _create_schema(db: aiosqlite.Connection) -> None:
    """Create database tables and indexes."""
    # Flow definitions
    await db.execute("""
        CREATE TABLE IF NOT EXISTS flows (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 1,
            definition_json TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    # Project bindings - which projects a flow is offered on
    await db.execute("""
        CREATE TABLE IF NOT EXISTS flow_projects (
            flow_id TEXT NOT NULL,
            project_key TEXT NOT NULL,
            PRIMARY KEY (flow_id, project_key),
            FOREIGN KEY (flow_id) REFERENCES flows(id) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_flow_projects_key
        ON flow_projects(project_key)
    """)

    # =========================================================================
    # Execution state, one row per (record, flow)
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS execution_states (
            record_id TEXT NOT NULL,
            flow_id TEXT NOT NULL,
            state_json TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 1,
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            PRIMARY KEY (record_id, flow_id),
            FOREIGN KEY (flow_id) REFERENCES flows(id) ON DELETE CASCADE
        )
    """)

    # =========================================================================
    # Audit trail (append-only)
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            record_id TEXT NOT NULL,
            flow_id TEXT NOT NULL,
            node_id TEXT,
            node_type TEXT,
            outcome_json TEXT NOT NULL,
            error TEXT,
            created_at TEXT NOT NULL
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_audit_log_record_flow
        ON audit_log(record_id, flow_id, id)
    """)

    await db.commit()

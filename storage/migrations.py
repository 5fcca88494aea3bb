"""Ad-hoc database migrations for Stamp."""

from __future__ import annotations

from sqlalchemy import text


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def ensure_entry_columns(conn) -> None:
    columns = {
        "is_archived": "BOOLEAN NOT NULL DEFAULT 0",
        "latitude": "FLOAT",
        "longitude": "FLOAT",
        "created_at": "DATETIME",
    }
    for name, ddl_type in columns.items():
        if not _column_exists(conn, "entry", name):
            conn.execute(text(f"ALTER TABLE entry ADD COLUMN {name} {ddl_type}"))

    # Early builds called the soft-delete flag ``is_deleted``.
    if _column_exists(conn, "entry", "is_deleted"):
        conn.execute(
            text(
                """
                UPDATE entry
                SET is_archived = 1
                WHERE is_deleted = 1 AND is_archived = 0
                """
            )
        )

    conn.execute(
        text(
            """
            UPDATE entry
            SET created_at = COALESCE(created_at, edit_timestamp)
            WHERE created_at IS NULL
            """
        )
    )


def clear_zero_coordinates(conn) -> None:
    # Rows written by the old store used 0 for "no location".
    conn.execute(
        text(
            """
            UPDATE entry
            SET latitude = NULL, longitude = NULL
            WHERE latitude = 0 AND longitude = 0
            """
        )
    )


def ensure_pending_changes_table(conn) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS pendingchange (
                entry_id TEXT PRIMARY KEY,
                marked_at DATETIME NOT NULL
            )
            """
        )
    )
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS ix_pendingchange_marked_at
            ON pendingchange (marked_at)
            """
        )
    )


def run_all(engine) -> None:
    with engine.begin() as conn:
        ensure_entry_columns(conn)
        clear_zero_coordinates(conn)
        # SQLModel creates the pendingchange table, but ensure indexes exist in legacy DBs
        ensure_pending_changes_table(conn)


__all__ = ["run_all"]

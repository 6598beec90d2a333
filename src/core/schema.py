"""SQLite schema management (code-first approach)."""

import logging


logger = logging.getLogger(__name__)


# Central list of all collections in the schema
COLLECTIONS = [
    "users",
    "cohorts",
    "messages",
    "tasks",
]

# Columns stored as JSON text and decoded on read
JSON_FIELDS: dict[str, frozenset[str]] = {
    "cohorts": frozenset({"members"}),
}

# Columns stored as 0/1 and decoded to bool on read
BOOL_FIELDS: dict[str, frozenset[str]] = {
    "tasks": frozenset({"is_completed"}),
}


def _get_collection_ddl(*, collection_name: str) -> list[str]:
    """Get the CREATE statements (table first, then indexes) for a collection."""
    ddl = {
        # Profiles are keyed by the identity provider's user id, not a generated one
        "users": [
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                display_name TEXT NOT NULL DEFAULT '',
                email TEXT,
                photo_url TEXT,
                created TEXT NOT NULL,
                updated TEXT NOT NULL
            )
            """,
        ],
        "cohorts": [
            """
            CREATE TABLE IF NOT EXISTS cohorts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL CHECK (length(name) BETWEEN 1 AND 100),
                goal TEXT NOT NULL CHECK (length(goal) BETWEEN 1 AND 500),
                end_timestamp TEXT NOT NULL,
                creator_id TEXT NOT NULL,
                members TEXT NOT NULL DEFAULT '[]' CHECK (json_valid(members)),
                created TEXT NOT NULL,
                updated TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_cohorts_end ON cohorts (end_timestamp)",
        ],
        "messages": [
            """
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                cohort_id TEXT NOT NULL,
                text TEXT NOT NULL CHECK (length(text) > 0),
                sender_id TEXT NOT NULL,
                sender_name TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                created TEXT NOT NULL,
                updated TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_messages_feed ON messages (cohort_id, timestamp, id)",
        ],
        "tasks": [
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                cohort_id TEXT NOT NULL,
                text TEXT NOT NULL CHECK (length(text) > 0),
                is_completed INTEGER NOT NULL DEFAULT 0,
                creator_id TEXT NOT NULL,
                created TEXT NOT NULL,
                updated TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_tasks_cohort ON tasks (cohort_id, id)",
        ],
    }
    return ddl[collection_name]


async def init_db(*, db_path: str | None = None) -> None:
    """Create every collection and index if missing (idempotent)."""
    from src.core import db_client  # noqa: PLC0415 - db_client imports this module

    logger.info("Starting SQLite schema sync...")

    conn = await db_client.get_connection(db_path=db_path)
    for collection_name in COLLECTIONS:
        for statement in _get_collection_ddl(collection_name=collection_name):
            await conn.execute(statement)
    await conn.commit()

    logger.info("SQLite schema sync complete", extra={"collections": COLLECTIONS})

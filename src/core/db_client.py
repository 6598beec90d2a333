"""SQLite document store client with CRUD and atomic field operations."""

import asyncio
import json
import logging
import re
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from src.core.clock_gate import to_iso
from src.core.config import settings
from src.core.schema import BOOL_FIELDS, JSON_FIELDS


logger = logging.getLogger(__name__)


class DatabaseError(RuntimeError):
    """Raised when a store operation fails."""


class RecordNotFoundError(KeyError):
    """Raised when a record id does not resolve."""


class _ServerTimestamp:
    """Sentinel replaced with the store's own clock at write time."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Any = _ServerTimestamp()


def _validate_identifier(name: str) -> None:
    """Validate that a collection or field name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", name):
        msg = f"Invalid identifier: {name}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in filter queries via json.dumps."""
    return json.dumps(str(value))[1:-1]


def _store_now() -> str:
    return to_iso(datetime.now(UTC))


def _encode_value(value: Any, *, now: str) -> Any:  # noqa: ANN401
    """Convert a Python value into something SQLite can bind."""
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, dict | list | set | frozenset):
        return json.dumps(sorted(value) if isinstance(value, set | frozenset) else value)
    return value


def _decode_record(collection: str, record: dict[str, Any]) -> dict[str, Any]:
    """Convert ids to strings and decode JSON and boolean columns."""
    converted = record.copy()
    if isinstance(converted.get("id"), int):
        converted["id"] = str(converted["id"])
    for field in JSON_FIELDS.get(collection, frozenset()):
        if isinstance(converted.get(field), str):
            converted[field] = json.loads(converted[field])
    for field in BOOL_FIELDS.get(collection, frozenset()):
        if field in converted and converted[field] is not None:
            converted[field] = bool(converted[field])
    return converted


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(value: str, *, is_like: bool = False) -> str | int | float | bool | None:
    """Parse a string value to the appropriate Python type for SQLite."""
    if is_like:
        escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return f"%{escaped}%"

    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)

    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    return value


def _parse_single_comparison(comparison: str) -> tuple[str, str | int | float | None]:
    """Parse a single comparison expression into a SQL condition and parameter."""
    match = re.fullmatch(
        r"""(\w+)\s*(=|!=|>=|<=|>|<|~|\?=)\s*(?:"((?:[^"\\]|\\.)*)"|'((?:[^'\\]|\\.)*)')""",
        comparison.strip(),
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    op = match.group(2)
    # Double-quoted values carry sanitize_param's JSON escaping
    if match.group(3) is not None:
        try:
            raw_value = json.loads(f'"{match.group(3)}"')
        except json.JSONDecodeError as e:
            msg = f"Invalid filter syntax: {comparison}"
            raise ValueError(msg) from e
    else:
        raw_value = re.sub(r"\\(.)", r"\1", match.group(4))

    # Any element of a JSON list column equals the value
    if op == "?=":
        return f"EXISTS (SELECT 1 FROM json_each({field}) WHERE json_each.value = ?)", raw_value

    # SQLite LIKE is case-insensitive for ASCII
    if op == "~":
        return f"{field} LIKE ? ESCAPE '\\'", _parse_value(raw_value, is_like=True)

    return f"{field} {op} ?", _parse_value(raw_value)


def _split_and_conditions(filter_query: str) -> list[str]:
    """Split filter query by && while leaving quoted values intact."""
    parts = []
    current = ""
    quote: str | None = None
    escaped = False
    i = 0

    while i < len(filter_query):
        char = filter_query[i]
        if quote is not None:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif filter_query.startswith("&&", i):
            parts.append(current)
            current = ""
            i += 2
            continue
        current += char
        i += 1

    parts.append(current)
    return parts


def parse_filter(filter_query: str) -> tuple[str, list[str | int | float | None]]:
    """Parse `field op "value" && ...` filter syntax into a SQL WHERE clause and parameter list."""
    if not filter_query:
        return "", []

    conditions = []
    params = []
    for part in _split_and_conditions(filter_query):
        cond, value = _parse_single_comparison(part)
        conditions.append(cond)
        params.append(value)

    return " AND ".join(conditions), params


def parse_sort(sort: str) -> str:
    """Translate `+field,-other` sort syntax into an ORDER BY clause, defaulting to id ASC."""
    if not sort:
        return "id ASC"

    clauses = []
    for raw_part in sort.split(","):
        part = raw_part.strip()
        if not re.match(r"^[+-]?[A-Za-z_][A-Za-z0-9_]*$", part):
            logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
            return "id ASC"
        direction = "DESC" if part.startswith("-") else "ASC"
        clauses.append(f"{part.lstrip('+-')} {direction}")
    return ", ".join(clauses)


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_db_locks: dict[int, asyncio.Lock] = {}


def _connection_key(db_path: str | None) -> tuple[int, int, str]:
    thread_id = threading.get_ident()
    loop_id = id(asyncio.get_running_loop())
    return thread_id, loop_id, str(get_db_path(db_path))


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    cache_key = _connection_key(db_path)
    thread_id, loop_id, path_str = cache_key

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    # Locks are per loop so a lock never outlives the loop it was created on
    lock = _db_locks.setdefault(loop_id, asyncio.Lock())
    async with lock:
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path = Path(path_str)
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(path_str)
        await conn.execute("PRAGMA journal_mode = WAL")

        _db_connections[cache_key] = conn

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": path_str, "thread_id": thread_id, "loop_id": loop_id},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    cache_key = _connection_key(db_path)
    thread_id, loop_id, path_str = cache_key

    conn = _db_connections.pop(cache_key, None)
    if conn is None:
        return

    try:
        await conn.close()
        logger.info(
            "Closed SQLite connection",
            extra={"thread_id": thread_id, "loop_id": loop_id, "db_path": path_str},
        )
    except aiosqlite.Error as e:
        logger.warning(
            "Error closing SQLite connection",
            extra={"error": str(e), "thread_id": thread_id, "loop_id": loop_id},
        )
    finally:
        if not any(key[1] == loop_id for key in _db_connections):
            _db_locks.pop(loop_id, None)


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    schema = __import__("src.core.schema", fromlist=["init_db"])
    await schema.init_db(db_path=db_path)


async def _fetch_one(
    conn: aiosqlite.Connection, *, collection: str, where: str, params: tuple[Any, ...]
) -> dict[str, Any] | None:
    cursor = await conn.execute(f"SELECT * FROM {collection} WHERE {where}", params)  # noqa: S608 - identifiers are validated
    row = await cursor.fetchone()
    if row is None:
        return None
    columns = [description[0] for description in cursor.description]
    return _decode_record(collection, dict(zip(columns, row, strict=True)))


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its store-assigned id and timestamps.

    Values equal to SERVER_TIMESTAMP are replaced with the store's clock, as are
    the `created` and `updated` columns.
    """
    try:
        _validate_identifier(collection)
        for key in data:
            _validate_identifier(key)
        conn = await get_connection()

        now = _store_now()
        row = {**data, "created": now, "updated": now}
        columns = list(row.keys())
        values = [_encode_value(row[key], now=now) for key in columns]

        query = f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})"  # noqa: S608 - identifiers are validated
        cursor = await conn.execute(query, values)
        await conn.commit()

        if "id" in data:
            record = await _fetch_one(conn, collection=collection, where="id = ?", params=(data["id"],))
        else:
            record = await _fetch_one(conn, collection=collection, where="rowid = ?", params=(cursor.lastrowid,))
        if record is None:
            msg = f"Record vanished after insert in {collection}"
            raise DatabaseError(msg)

        logger.info("Created record", extra={"collection": collection, "record_id": record["id"]})
        return record
    except DatabaseError:
        raise
    except aiosqlite.OperationalError as e:
        if "no such table" in str(e):
            msg = f"Table '{collection}' does not exist. Call init_db() first."
            logger.error("Table not found", extra={"collection": collection})
            raise DatabaseError(msg) from e
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        raise DatabaseError(f"Failed to create record in {collection}: {e}") from e
    except aiosqlite.Error as e:
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        raise DatabaseError(f"Failed to create record in {collection}: {e}") from e


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising RecordNotFoundError if not found."""
    try:
        _validate_identifier(collection)
        conn = await get_connection()
        record = await _fetch_one(conn, collection=collection, where="id = ?", params=(record_id,))
    except aiosqlite.Error as e:
        logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        raise DatabaseError(f"Failed to get record from {collection}: {e}") from e

    if record is None:
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
    return record


async def add_to_set(*, collection: str, record_id: str, field: str, value: str) -> bool:
    """Atomically append `value` to the JSON list `field` unless already present.

    Runs as a single UPDATE statement, so concurrent callers adding different
    values never overwrite each other.

    Returns:
        True if the value was added, False if it was already present

    Raises:
        RecordNotFoundError: If the record does not exist
        DatabaseError: For other failures
    """
    try:
        _validate_identifier(collection)
        _validate_identifier(field)
        conn = await get_connection()

        query = (
            f"UPDATE {collection} SET {field} = json_insert({field}, '$[#]', ?), updated = ? "  # noqa: S608 - identifiers are validated
            f"WHERE id = ? AND NOT EXISTS (SELECT 1 FROM json_each({collection}.{field}) WHERE json_each.value = ?)"
        )
        cursor = await conn.execute(query, (value, _store_now(), record_id, value))
        await conn.commit()
    except aiosqlite.Error as e:
        logger.error("add_to_set_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        raise DatabaseError(f"Failed to add to set in {collection}: {e}") from e

    if cursor.rowcount > 0:
        logger.info("Added to set", extra={"collection": collection, "record_id": record_id, "field": field})
        return True

    # Either already present or the record does not exist
    await get_record(collection=collection, record_id=record_id)
    return False


async def toggle_field(*, collection: str, record_id: str, field: str) -> dict[str, Any]:
    """Atomically flip a boolean column against its current stored value and return the record."""
    try:
        _validate_identifier(collection)
        _validate_identifier(field)
        conn = await get_connection()

        query = f"UPDATE {collection} SET {field} = NOT {field}, updated = ? WHERE id = ?"  # noqa: S608 - identifiers are validated
        cursor = await conn.execute(query, (_store_now(), record_id))
        await conn.commit()
    except aiosqlite.Error as e:
        logger.error("toggle_field_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        raise DatabaseError(f"Failed to toggle field in {collection}: {e}") from e

    if cursor.rowcount == 0:
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    logger.info("Toggled field", extra={"collection": collection, "record_id": record_id, "field": field})
    return await get_record(collection=collection, record_id=record_id)


async def list_records(
    *,
    collection: str,
    filter_query: str = "",
    sort: str = "",
) -> list[dict[str, Any]]:
    """List every record matching the filter, in the requested order."""
    try:
        _validate_identifier(collection)
        conn = await get_connection()

        where_clause = ""
        params: list[Any] = []
        if filter_query:
            where_clause, params = parse_filter(filter_query)
            where_clause = f"WHERE {where_clause}"

        query = f"SELECT * FROM {collection} {where_clause} ORDER BY {parse_sort(sort)}"  # noqa: S608 - identifiers are validated
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        columns = [description[0] for description in cursor.description]
        records = [_decode_record(collection, dict(zip(columns, row, strict=True))) for row in rows]

        logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
        return records
    except aiosqlite.Error as e:
        logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
        raise DatabaseError(f"Failed to list records from {collection}: {e}") from e


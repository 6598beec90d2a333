"""Unit tests for the SQLite document store."""

import asyncio

import pytest

from src.core import db_client
from src.core.db_client import SERVER_TIMESTAMP, DatabaseError, RecordNotFoundError


async def _cohort_record(**overrides) -> dict:
    data = {
        "name": "Morning Runs",
        "goal": "Run 5k every morning",
        "end_timestamp": "2024-01-10T00:00:00.000000+00:00",
        "creator_id": "user-alice",
        "members": ["user-alice"],
        **overrides,
    }
    return await db_client.create_record(collection="cohorts", data=data)


@pytest.mark.unit
class TestFilterParsing:
    """Tests for filter and sort translation."""

    def test_equality_and_conjunction(self):
        """Comparisons joined with && become AND-ed SQL conditions."""
        where, params = db_client.parse_filter('cohort_id = "abc" && is_completed = "false"')

        assert where == "cohort_id = ? AND is_completed = ?"
        assert params == ["abc", False]

    def test_any_element_operator(self):
        """?= matches any element of a JSON list column."""
        where, params = db_client.parse_filter('members ?= "user-alice"')

        assert "json_each(members)" in where
        assert params == ["user-alice"]

    def test_like_escapes_wildcards(self):
        """~ searches for a literal substring."""
        _, params = db_client.parse_filter('name ~ "100%"')

        assert params == ["%100\\%%"]

    def test_sanitized_value_round_trips(self):
        """Quotes, backslashes and non-ASCII survive sanitize_param and parsing."""
        raw = 'say "hi" \\ caf\u00e9'
        _, params = db_client.parse_filter(f'creator_id = "{db_client.sanitize_param(raw)}"')

        assert params == [raw]

    def test_ampersands_inside_quotes_are_not_separators(self):
        """&& only joins comparisons when it is outside a quoted value."""
        where, params = db_client.parse_filter('members ?= "team&&lead" && name = \'a && b\'')

        assert where.count(" AND ") == 1
        assert params == ["team&&lead", "a && b"]

    def test_invalid_filter_raises(self):
        """Unparseable filters are rejected."""
        with pytest.raises(ValueError, match="Invalid filter syntax"):
            db_client.parse_filter("name is alice")

    def test_sort_directions(self):
        """+ and - prefixes map to ASC and DESC."""
        assert db_client.parse_sort("+timestamp,-id") == "timestamp ASC, id DESC"
        assert db_client.parse_sort("name") == "name ASC"

    def test_invalid_sort_falls_back(self):
        """A malformed sort falls back to id order."""
        assert db_client.parse_sort("name; DROP TABLE cohorts") == "id ASC"


@pytest.mark.unit
class TestRecords:
    """Tests for CRUD operations."""

    async def test_create_assigns_id_and_timestamps(self, db):
        """create_record returns the stored record with a string id."""
        record = await _cohort_record()

        assert isinstance(record["id"], str)
        assert record["members"] == ["user-alice"]
        assert record["created"] == record["updated"]

    async def test_server_timestamp_resolved_at_write(self, db):
        """SERVER_TIMESTAMP is replaced with the store clock."""
        record = await db_client.create_record(
            collection="messages",
            data={
                "cohort_id": "1",
                "text": "hi",
                "sender_id": "user-alice",
                "sender_name": "Alice",
                "timestamp": SERVER_TIMESTAMP,
            },
        )

        assert record["timestamp"] == record["created"]

    async def test_get_missing_record_raises(self, db):
        """Unknown ids raise RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            await db_client.get_record(collection="cohorts", record_id="999")

    async def test_list_filters_and_sorts(self, db):
        """list_records applies the filter and the sort."""
        await _cohort_record(name="B", end_timestamp="2024-03-01T00:00:00.000000+00:00")
        await _cohort_record(name="A", end_timestamp="2024-02-01T00:00:00.000000+00:00")
        await _cohort_record(name="C", members=["user-bob"])

        records = await db_client.list_records(
            collection="cohorts", filter_query='members ?= "user-alice"', sort="+end_timestamp"
        )

        assert [r["name"] for r in records] == ["A", "B"]

    async def test_missing_table_raises_database_error(self, db):
        """Store failures surface as DatabaseError."""
        with pytest.raises(DatabaseError):
            await db_client.list_records(collection="nonexistent")

    async def test_invalid_collection_name_rejected(self, db):
        """Collection names are validated before reaching SQL."""
        with pytest.raises(ValueError, match="Invalid identifier"):
            await db_client.get_record(collection="cohorts; --", record_id="1")


@pytest.mark.unit
class TestAtomicOperations:
    """Tests for add_to_set and toggle_field."""

    async def test_add_to_set_adds_once(self, db):
        """Adding the same value twice leaves a single copy."""
        record = await _cohort_record()

        first = await db_client.add_to_set(collection="cohorts", record_id=record["id"], field="members", value="user-bob")
        second = await db_client.add_to_set(collection="cohorts", record_id=record["id"], field="members", value="user-bob")

        stored = await db_client.get_record(collection="cohorts", record_id=record["id"])
        assert (first, second) == (True, False)
        assert stored["members"] == ["user-alice", "user-bob"]

    async def test_concurrent_add_to_set_keeps_every_value(self, db):
        """Concurrent adds of different values never lose one."""
        record = await _cohort_record()
        users = [f"user-{i}" for i in range(10)]

        await asyncio.gather(
            *(
                db_client.add_to_set(collection="cohorts", record_id=record["id"], field="members", value=user)
                for user in users
            )
        )

        stored = await db_client.get_record(collection="cohorts", record_id=record["id"])
        assert set(stored["members"]) == {"user-alice", *users}

    async def test_add_to_set_missing_record_raises(self, db):
        """add_to_set on an unknown id raises RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            await db_client.add_to_set(collection="cohorts", record_id="999", field="members", value="user-bob")

    async def test_toggle_field_flips_stored_value(self, db):
        """toggle_field flips the stored boolean each call."""
        task = await db_client.create_record(
            collection="tasks",
            data={"cohort_id": "1", "text": "Stretch", "is_completed": False, "creator_id": "user-alice"},
        )

        once = await db_client.toggle_field(collection="tasks", record_id=task["id"], field="is_completed")
        twice = await db_client.toggle_field(collection="tasks", record_id=task["id"], field="is_completed")

        assert task["is_completed"] is False
        assert once["is_completed"] is True
        assert twice["is_completed"] is False

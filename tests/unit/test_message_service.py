"""Unit tests for the message feed service."""

import asyncio
from datetime import timedelta

import pytest

from src.core import db_client
from src.core.errors import CohortExpiredError, EmptyTextError, NotMemberError, UnauthenticatedError
from src.core.sync_engine import SyncEngine
from src.services import cohort_service, message_service


async def _messages(cohort_id: str) -> list[dict]:
    return await db_client.list_records(collection="messages", filter_query=f'cohort_id = "{cohort_id}"')


@pytest.mark.unit
class TestSendMessage:
    """Tests for send_message."""

    async def test_send_stores_trimmed_message(self, cohort, alice):
        """A member's message is stored trimmed with their name and a store timestamp."""
        message = await message_service.send_message(cohort_id=cohort.id, author=alice, text="  Day 1 done  ")

        assert message.text == "Day 1 done"
        assert message.sender_id == alice.id
        assert message.sender_name == "Alice"
        assert message.timestamp is not None
        assert message.id

    async def test_missing_display_name_is_anonymous(self, cohort, carol):
        """Senders without a display name appear as Anonymous."""
        await cohort_service.join(cohort_id=cohort.id, identity=carol)

        message = await message_service.send_message(cohort_id=cohort.id, author=carol, text="hello")

        assert message.sender_name == "Anonymous"

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_text_rejected_without_write(self, cohort, alice, text):
        """Blank messages are rejected and nothing is stored."""
        with pytest.raises(EmptyTextError):
            await message_service.send_message(cohort_id=cohort.id, author=alice, text=text)

        assert await _messages(cohort.id) == []

    async def test_guest_rejected(self, cohort):
        """Sending without an identity raises UnauthenticatedError."""
        with pytest.raises(UnauthenticatedError):
            await message_service.send_message(cohort_id=cohort.id, author=None, text="hi")

    async def test_non_member_rejected(self, cohort, bob):
        """A signed-in non-member cannot post."""
        with pytest.raises(NotMemberError):
            await message_service.send_message(cohort_id=cohort.id, author=bob, text="hello")

        assert await _messages(cohort.id) == []

    async def test_send_after_expiry_rejected(self, cohort, frozen_clock, alice):
        """Once the end timestamp passes, sends fail and the feed is unchanged."""
        await message_service.send_message(cohort_id=cohort.id, author=alice, text="before")
        frozen_clock.advance(timedelta(days=5, seconds=1))

        with pytest.raises(CohortExpiredError):
            await message_service.send_message(cohort_id=cohort.id, author=alice, text="after")

        assert [m["text"] for m in await _messages(cohort.id)] == ["before"]


@pytest.mark.unit
class TestMessageFeed:
    """Tests for the live message feed."""

    async def test_feed_sorted_by_timestamp_regardless_of_insert_order(self, cohort):
        """The feed is ordered by timestamp, then id, whatever the write order."""
        for text, timestamp in (
            ("third", "2024-01-05T12:03:00.000000+00:00"),
            ("first", "2024-01-05T12:01:00.000000+00:00"),
            ("tie-a", "2024-01-05T12:02:00.000000+00:00"),
            ("tie-b", "2024-01-05T12:02:00.000000+00:00"),
        ):
            await db_client.create_record(
                collection="messages",
                data={
                    "cohort_id": cohort.id,
                    "text": text,
                    "sender_id": "user-alice",
                    "sender_name": "Alice",
                    "timestamp": timestamp,
                },
            )
        engine = SyncEngine()

        snapshot = await asyncio.wait_for(anext(aiter(message_service.subscribe(cohort_id=cohort.id, engine=engine))), 2)

        assert [m.text for m in snapshot] == ["first", "tie-a", "tie-b", "third"]
        engine.close()

    async def test_subscriber_sees_each_append(self, cohort, alice):
        """A subscriber receives one snapshot per appended message."""
        engine = SyncEngine()
        feed = aiter(message_service.subscribe(cohort_id=cohort.id, engine=engine))
        assert await asyncio.wait_for(anext(feed), 2) == []

        await message_service.send_message(cohort_id=cohort.id, author=alice, text="one")
        first = await asyncio.wait_for(anext(feed), 2)
        await message_service.send_message(cohort_id=cohort.id, author=alice, text="two")
        second = await asyncio.wait_for(anext(feed), 2)

        assert [m.text for m in first] == ["one"]
        assert [m.text for m in second] == ["one", "two"]
        engine.close()

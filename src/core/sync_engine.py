"""Sync engine: store change notifications in, ordered snapshots out; write intents down.

A SyncEngine belongs to one session. It keeps at most one live Subscription
per stream kind; subscribing to a kind again (for example after the cohort id
changes) closes the previous subscription before the new one is opened.

Snapshots are always full views of the stream, never deltas. The first
snapshot is produced on first iteration even when nothing has changed yet,
then exactly one snapshot follows every change notification for the topic.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from typing import Any

from pydantic import BaseModel

from src.core import db_client
from src.core.change_feed import ChangeFeed, Listener, get_change_feed
from src.core.db_client import DatabaseError, RecordNotFoundError, sanitize_param
from src.core.errors import SyncUnavailableError
from src.core.logging import span
from src.domain.cohort import Cohort
from src.domain.message import Message
from src.domain.task import Task


logger = logging.getLogger(__name__)

Snapshot = list[Any] | BaseModel | None


class StreamKind(StrEnum):
    """Streams a session can subscribe to."""

    COHORT = "cohort"
    MESSAGES = "messages"
    TASKS = "tasks"
    MEMBER_COHORTS = "member_cohorts"


@dataclass(frozen=True)
class StreamDefinition:
    """How a stream kind maps onto a store query."""

    collection: str
    scope_field: str
    model: type[BaseModel]
    sort: str = ""
    single: bool = False
    scope_op: str = "="

    def filter_for(self, scope_id: str) -> str:
        return f'{self.scope_field} {self.scope_op} "{sanitize_param(scope_id)}"'


STREAMS: dict[StreamKind, StreamDefinition] = {
    StreamKind.COHORT: StreamDefinition(collection="cohorts", scope_field="id", model=Cohort, single=True),
    # Feed order is total: timestamp first, store id breaks ties
    StreamKind.MESSAGES: StreamDefinition(
        collection="messages", scope_field="cohort_id", model=Message, sort="+timestamp,+id"
    ),
    StreamKind.TASKS: StreamDefinition(collection="tasks", scope_field="cohort_id", model=Task, sort="+id"),
    StreamKind.MEMBER_COHORTS: StreamDefinition(
        collection="cohorts", scope_field="members", model=Cohort, sort="+end_timestamp,+id", scope_op="?="
    ),
}


def topic_for(kind: StreamKind, scope_id: str) -> str:
    return f"{kind}:{scope_id}"


async def fetch_snapshot(kind: StreamKind, scope_id: str) -> Snapshot:
    """Read the current full view of a stream.

    Returns the model for single-document streams (None if the document does not
    exist) and an ordered list of models otherwise.

    Raises:
        SyncUnavailableError: If the store read fails or returns malformed records
    """
    definition = STREAMS[kind]
    try:
        if definition.single:
            try:
                record = await db_client.get_record(collection=definition.collection, record_id=scope_id)
            except RecordNotFoundError:
                return None
            return definition.model.model_validate(record)

        records = await db_client.list_records(
            collection=definition.collection,
            filter_query=definition.filter_for(scope_id),
            sort=definition.sort,
        )
        return [definition.model.model_validate(record) for record in records]
    except (DatabaseError, ValueError) as e:
        # ValueError also covers pydantic ValidationError on malformed records
        logger.warning("Snapshot read failed", extra={"stream": str(kind), "scope_id": scope_id, "error": str(e)})
        raise SyncUnavailableError(f"Could not read {kind} for {scope_id}") from e


class Subscription:
    """A cancellable, lazy, infinite stream of snapshots for one (kind, scope) pair.

    Iterate with `async for`. close() is idempotent and may be called from any
    task; a snapshot that finishes loading after close() is dropped rather than
    delivered. A failed read raises SyncUnavailableError from the iterator and
    closes the subscription; reopening is up to the caller.
    """

    def __init__(
        self,
        *,
        kind: StreamKind,
        scope_id: str,
        listener: Listener,
        fetch: Callable[[], Awaitable[Snapshot]],
        on_close: Callable[["Subscription"], None] | None = None,
    ) -> None:
        self.kind = kind
        self.scope_id = scope_id
        self._listener = listener
        self._fetch = fetch
        self._on_close = on_close
        self._closed = False
        self._consumed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._listener.close()
        if self._on_close is not None:
            self._on_close(self)
        logger.debug("Subscription closed", extra={"stream": str(self.kind), "scope_id": self.scope_id})

    def __aiter__(self) -> AsyncIterator[Snapshot]:
        if self._consumed:
            raise RuntimeError("Subscription can only be iterated once; subscribe again to restart")
        self._consumed = True
        return self._snapshots()

    async def _snapshots(self) -> AsyncIterator[Snapshot]:
        try:
            if self._closed:
                return
            snapshot = await self._fetch()
            while True:
                if self._closed:
                    return
                yield snapshot
                if not await self._listener.wait():
                    return
                snapshot = await self._fetch()
        finally:
            self.close()


class WriteOp(StrEnum):
    """Store write primitives the engine can dispatch."""

    CREATE = "create"
    TOGGLE = "toggle"
    ADD_TO_SET = "add_to_set"


@dataclass(frozen=True)
class WriteIntent:
    """A single local write against one stream.

    `scope_id` names the stream to notify; it may be empty for a CREATE on a
    single-document stream, in which case the new record's id is used.
    `notify` lists additional streams affected by the write.
    """

    op: WriteOp
    kind: StreamKind
    scope_id: str = ""
    record_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    field_name: str | None = None
    value: str | None = None
    notify: tuple[tuple[StreamKind, str], ...] = ()


class SyncEngine:
    """Per-session owner of subscriptions and the write path."""

    def __init__(self, *, feed: ChangeFeed | None = None) -> None:
        self._feed = feed or get_change_feed()
        self._active: dict[StreamKind, Subscription] = {}

    def active(self, kind: StreamKind) -> Subscription | None:
        return self._active.get(kind)

    def subscribe(self, kind: StreamKind, scope_id: str) -> Subscription:
        """Open the subscription for a stream, first closing any previous one of the same kind."""
        previous = self._active.pop(kind, None)
        if previous is not None:
            previous.close()

        # Listen before the first read so no change between the two is lost
        listener = self._feed.listen(topic_for(kind, scope_id))
        subscription = Subscription(
            kind=kind,
            scope_id=scope_id,
            listener=listener,
            fetch=partial(fetch_snapshot, kind, scope_id),
            on_close=self._forget,
        )
        self._active[kind] = subscription
        logger.debug("Subscription opened", extra={"stream": str(kind), "scope_id": scope_id})
        return subscription

    def _forget(self, subscription: Subscription) -> None:
        if self._active.get(subscription.kind) is subscription:
            del self._active[subscription.kind]

    def close(self) -> None:
        """Close every open subscription. Idempotent."""
        for subscription in list(self._active.values()):
            subscription.close()

    async def dispatch(self, intent: WriteIntent) -> Any:  # noqa: ANN401
        """Perform one store write and announce the change to subscribers.

        Returns the store's result: the written record, or for ADD_TO_SET
        whether the value was newly added (nothing is announced if not).

        Raises:
            RecordNotFoundError: If the target record does not exist
            SyncUnavailableError: If the store write fails
        """
        definition = STREAMS[intent.kind]
        with span(f"sync_engine.dispatch.{intent.op}"):
            try:
                if intent.op == WriteOp.CREATE:
                    result: Any = await db_client.create_record(collection=definition.collection, data=intent.data)
                    changed = True
                elif intent.op == WriteOp.TOGGLE:
                    result = await db_client.toggle_field(
                        collection=definition.collection,
                        record_id=_require(intent.record_id),
                        field=_require(intent.field_name),
                    )
                    changed = True
                else:
                    result = changed = await db_client.add_to_set(
                        collection=definition.collection,
                        record_id=_require(intent.record_id),
                        field=_require(intent.field_name),
                        value=_require(intent.value),
                    )
            except DatabaseError as e:
                logger.warning(
                    "Dispatch failed",
                    extra={"op": str(intent.op), "stream": str(intent.kind), "error": str(e)},
                )
                raise SyncUnavailableError(f"Could not write to {definition.collection}") from e

            if changed:
                scope_id = intent.scope_id or result["id"]
                await self._feed.publish(topic_for(intent.kind, scope_id))
                for kind, extra_scope in intent.notify:
                    await self._feed.publish(topic_for(kind, extra_scope))

            return result


def _require(value: str | None) -> str:
    if not value:
        raise ValueError("Write intent is missing a required field")
    return value

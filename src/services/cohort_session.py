"""Cohort session: one participant's live view of a cohort and their write path into it.

The session owns its state. It subscribes to the cohort document, its message
feed and its checklist, and keeps the latest snapshot of each. Membership and
gate state are never cached; they are derived from the latest cohort snapshot
and the clock every time they are read.

Writes are checked here first, synchronously against the latest snapshot, and
then again by the service layer against the stored cohort right before the
write goes out.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta
from types import TracebackType
from typing import Self

from src.core import clock_gate
from src.core.clock_gate import ENDED_LABEL, GateState
from src.core.config import settings
from src.core.errors import (
    CohortExpiredError,
    EmptyTextError,
    NotMemberError,
    SyncUnavailableError,
    UnauthenticatedError,
)
from src.core.logging import span
from src.core.sync_engine import Snapshot, StreamKind, Subscription, SyncEngine
from src.domain.cohort import Cohort
from src.domain.message import Message
from src.domain.task import Task
from src.domain.user import Identity
from src.interface.identity import IdentityProvider
from src.services import checklist_service, cohort_service, message_service


logger = logging.getLogger(__name__)

SESSION_STREAMS = (StreamKind.COHORT, StreamKind.MESSAGES, StreamKind.TASKS)


class CohortSession:
    """Live state and actions for one cohort, as seen by the current identity.

    Usage:
        async with CohortSession(cohort_id, provider) as session:
            await session.send("Day 3 done")
            await session.wait_until(lambda s: len(s.messages) == 1)
    """

    def __init__(
        self,
        cohort_id: str,
        identity_provider: IdentityProvider,
        *,
        engine: SyncEngine | None = None,
        clock: clock_gate.Clock | None = None,
    ) -> None:
        self.cohort_id = cohort_id
        self._identity_provider = identity_provider
        self._engine = engine or SyncEngine()
        self._clock = clock
        self._changed = asyncio.Condition()
        self._pumps: dict[StreamKind, asyncio.Task[None]] = {}
        self._active = False
        self._reset_state()

    def _reset_state(self) -> None:
        self.cohort: Cohort | None = None
        self.messages: list[Message] = []
        self.tasks: list[Task] = []
        self.sync_errors: dict[StreamKind, SyncUnavailableError] = {}

    def _now(self) -> datetime:
        return clock_gate.read_clock(self._clock)

    # Lifecycle

    async def activate(self) -> Cohort:
        """Load the cohort and start following its document, feed and checklist.

        Raises:
            NotFoundError: If the cohort does not exist
            SyncUnavailableError: If the store cannot be read
        """
        with span("cohort_session.activate", cohort_id=self.cohort_id):
            if self._active:
                return self._require_cohort()

            self.cohort = await cohort_service.get_cohort(cohort_id=self.cohort_id)
            for kind in SESSION_STREAMS:
                self._open(kind)
            self._active = True
            logger.info("Cohort session active", extra={"cohort_id": self.cohort_id})
            return self.cohort

    async def switch(self, cohort_id: str) -> Cohort:
        """Follow a different cohort, releasing every subscription of the current one first."""
        with span("cohort_session.switch"):
            await self._release()
            self.cohort_id = cohort_id
            self._reset_state()
            return await self.activate()

    async def close(self) -> None:
        """Release every subscription and pump. Safe to call more than once."""
        await self._release()

    async def __aenter__(self) -> Self:
        await self.activate()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _release(self) -> None:
        self._engine.close()
        pumps = list(self._pumps.values())
        self._pumps.clear()
        for pump in pumps:
            pump.cancel()
        for pump in pumps:
            with contextlib.suppress(asyncio.CancelledError):
                await pump
        if self._active:
            logger.info("Cohort session released", extra={"cohort_id": self.cohort_id})
        self._active = False

    # Subscriptions

    def _open(self, kind: StreamKind) -> None:
        previous = self._pumps.pop(kind, None)
        if previous is not None:
            previous.cancel()
        self.sync_errors.pop(kind, None)
        subscription = self._engine.subscribe(kind, self.cohort_id)
        self._pumps[kind] = asyncio.create_task(self._pump(kind, subscription), name=f"cohort-session-{kind}")

    async def _pump(self, kind: StreamKind, subscription: Subscription) -> None:
        try:
            async for snapshot in subscription:
                await self._apply(kind, snapshot)
        except SyncUnavailableError as e:
            logger.warning(
                "Live updates stopped",
                extra={"cohort_id": self.cohort_id, "stream": str(kind), "error": str(e)},
            )
            self.sync_errors[kind] = e
            await self._notify()

    async def _apply(self, kind: StreamKind, snapshot: Snapshot) -> None:
        if kind == StreamKind.COHORT:
            # Cohorts are never deleted; keep the last known document
            if snapshot is not None:
                self.cohort = snapshot
        elif kind == StreamKind.MESSAGES:
            self.messages = snapshot
        else:
            self.tasks = snapshot
        await self._notify()

    async def _notify(self) -> None:
        async with self._changed:
            self._changed.notify_all()

    def resubscribe(self) -> list[StreamKind]:
        """Reopen every stream that stopped on a sync error. Returns the reopened kinds."""
        if not self._active:
            raise RuntimeError("Session is not active; call activate() first")
        failed = list(self.sync_errors)
        for kind in failed:
            self._open(kind)
        if failed:
            logger.info("Resubscribed", extra={"cohort_id": self.cohort_id, "streams": [str(k) for k in failed]})
        return failed

    async def wait_until(self, predicate: Callable[["CohortSession"], bool], timeout: float = 5.0) -> None:
        """Wait until pushed snapshots make `predicate(session)` true.

        Raises:
            TimeoutError: If the condition does not hold within `timeout` seconds
        """

        async def _wait() -> None:
            async with self._changed:
                await self._changed.wait_for(lambda: predicate(self))

        await asyncio.wait_for(_wait(), timeout)

    # Derived state

    @property
    def identity(self) -> Identity | None:
        return self._identity_provider.current_user()

    @property
    def is_member(self) -> bool:
        identity = self.identity
        return self.cohort is not None and identity is not None and self.cohort.has_member(identity.id)

    @property
    def is_expired(self) -> bool:
        return clock_gate.is_expired(self._require_cohort(), self._now())

    @property
    def gate_state(self) -> GateState:
        return clock_gate.gate_state(self._require_cohort(), self._now())

    @property
    def remaining(self) -> timedelta | None:
        return clock_gate.remaining(self._require_cohort(), self._now())

    @property
    def time_left(self) -> str:
        return clock_gate.format_remaining(self._require_cohort(), self._now())

    async def countdown(self, *, refresh_seconds: float | None = None) -> AsyncIterator[str]:
        """Yield the time-left label now and then every refresh interval, ending after "Ended"."""
        interval = settings.countdown_refresh_seconds if refresh_seconds is None else refresh_seconds
        while True:
            label = self.time_left
            yield label
            if label == ENDED_LABEL:
                return
            await asyncio.sleep(interval)

    def _require_cohort(self) -> Cohort:
        if self.cohort is None:
            raise RuntimeError("Session is not active; call activate() first")
        return self.cohort

    def _require_writer(self) -> Identity:
        identity = self.identity
        if identity is None:
            raise UnauthenticatedError("Sign in to post in this cohort")
        cohort = self._require_cohort()
        if not cohort.has_member(identity.id):
            raise NotMemberError(f"{identity.id} is not a member of cohort {cohort.id}")
        if clock_gate.is_expired(cohort, self._now()):
            raise CohortExpiredError(f"Cohort {cohort.id} has ended")
        return identity

    # Writes

    async def join(self) -> bool:
        """Join the cohort as the current identity. Returns False if already a member."""
        identity = self.identity
        if identity is None:
            raise UnauthenticatedError("Sign in to join this cohort")
        cohort = self._require_cohort()
        if cohort.has_member(identity.id):
            return False
        if clock_gate.is_expired(cohort, self._now()):
            raise CohortExpiredError(f"Cohort {cohort.id} has ended")
        return await cohort_service.join(
            cohort_id=self.cohort_id, identity=identity, engine=self._engine, clock=self._clock
        )

    async def send(self, text: str) -> Message:
        if not text.strip():
            raise EmptyTextError("Message text cannot be empty")
        identity = self._require_writer()
        return await message_service.send_message(
            cohort_id=self.cohort_id, author=identity, text=text, engine=self._engine, clock=self._clock
        )

    async def add_task(self, text: str) -> Task:
        if not text.strip():
            raise EmptyTextError("Task text cannot be empty")
        identity = self._require_writer()
        return await checklist_service.add_task(
            cohort_id=self.cohort_id, author=identity, text=text, engine=self._engine, clock=self._clock
        )

    async def toggle_task(self, task_id: str) -> Task:
        identity = self._require_writer()
        return await checklist_service.toggle_task(
            cohort_id=self.cohort_id, identity=identity, task_id=task_id, engine=self._engine, clock=self._clock
        )

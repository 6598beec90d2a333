"""Message feed service: append-only chat per cohort."""

import logging

from src.core.clock_gate import Clock
from src.core.db_client import SERVER_TIMESTAMP
from src.core.errors import EmptyTextError
from src.core.logging import span
from src.core.sync_engine import StreamKind, Subscription, SyncEngine, WriteIntent, WriteOp
from src.domain.message import Message
from src.domain.user import Identity
from src.services import cohort_service


logger = logging.getLogger(__name__)


async def send_message(
    *,
    cohort_id: str,
    author: Identity | None,
    text: str,
    engine: SyncEngine | None = None,
    clock: Clock | None = None,
) -> Message:
    """Append a message to a cohort's feed.

    The id and timestamp are assigned by the store; the sender's display name
    is captured now and never updated.

    Args:
        cohort_id: Target cohort
        author: Signed-in sender
        text: Message text, trimmed before storing
        engine: Sync engine used for the write (a fresh one if omitted)
        clock: Time source for the expiry check (the wall clock if omitted)

    Returns:
        The stored message

    Raises:
        EmptyTextError: If the text is blank
        UnauthenticatedError: If no author is given
        NotMemberError: If the author is not a member
        CohortExpiredError: If the cohort has ended
    """
    with span("message_service.send_message"):
        text = text.strip()
        if not text:
            raise EmptyTextError("Message text cannot be empty")

        await cohort_service.authorize_write(cohort_id=cohort_id, identity=author, clock=clock)
        assert author is not None

        engine = engine or SyncEngine()
        record = await engine.dispatch(
            WriteIntent(
                op=WriteOp.CREATE,
                kind=StreamKind.MESSAGES,
                scope_id=cohort_id,
                data={
                    "cohort_id": cohort_id,
                    "text": text,
                    "sender_id": author.id,
                    "sender_name": author.name,
                    "timestamp": SERVER_TIMESTAMP,
                },
            )
        )
        logger.info("Message sent", extra={"cohort_id": cohort_id, "message_id": record["id"], "sender_id": author.id})
        return Message.model_validate(record)


def subscribe(*, cohort_id: str, engine: SyncEngine) -> Subscription:
    """Open the live feed of a cohort: every message, oldest first."""
    return engine.subscribe(StreamKind.MESSAGES, cohort_id)

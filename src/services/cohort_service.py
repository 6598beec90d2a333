"""Cohort service: creation, lookup and the membership ledger."""

import logging
from datetime import datetime

from src.core import clock_gate
from src.core.db_client import RecordNotFoundError
from src.core.errors import CohortExpiredError, NotFoundError, NotMemberError, UnauthenticatedError
from src.core.logging import log_with_context, span
from src.core.sync_engine import StreamKind, SyncEngine, WriteIntent, WriteOp, fetch_snapshot
from src.domain.cohort import Cohort
from src.domain.create_models import CohortCreate
from src.domain.user import Identity


logger = logging.getLogger(__name__)


async def create_cohort(
    *,
    identity: Identity | None,
    name: str,
    goal: str,
    end_timestamp: datetime,
    engine: SyncEngine | None = None,
) -> Cohort:
    """Create a cohort with the creator as its only member.

    Args:
        identity: Signed-in creator
        name: Cohort name (trimmed, 1-100 characters)
        goal: Shared goal (trimmed, 1-500 characters)
        end_timestamp: Moment the cohort becomes read-only; must be in the future
        engine: Sync engine used for the write (a fresh one if omitted)

    Returns:
        The created cohort

    Raises:
        UnauthenticatedError: If no identity is given
        ValueError: If name, goal or end timestamp are invalid
    """
    with span("cohort_service.create_cohort"):
        if identity is None:
            raise UnauthenticatedError("Sign in to create a cohort")

        payload = CohortCreate(name=name, goal=goal, end_timestamp=end_timestamp, creator_id=identity.id)
        if not payload.end_timestamp > clock_gate.utc_now():
            raise ValueError("End date must be in the future")

        engine = engine or SyncEngine()
        record = await engine.dispatch(
            WriteIntent(
                op=WriteOp.CREATE,
                kind=StreamKind.COHORT,
                data={
                    "name": payload.name,
                    "goal": payload.goal,
                    "end_timestamp": payload.end_timestamp,
                    "creator_id": payload.creator_id,
                    "members": [payload.creator_id],
                },
                notify=((StreamKind.MEMBER_COHORTS, identity.id),),
            )
        )
        cohort = Cohort.model_validate(record)
        logger.info("Created cohort", extra={"cohort_id": cohort.id, "creator_id": identity.id})
        return cohort


async def get_cohort(*, cohort_id: str) -> Cohort:
    """Load a cohort from the store.

    Raises:
        NotFoundError: If the cohort does not exist
        SyncUnavailableError: If the store cannot be read
    """
    with span("cohort_service.get_cohort"):
        cohort = await fetch_snapshot(StreamKind.COHORT, cohort_id)
        if cohort is None:
            raise NotFoundError(f"Cohort not found: {cohort_id}")
        return cohort


def is_member(cohort: Cohort, user_id: str | None) -> bool:
    return cohort.has_member(user_id)


async def join(
    *,
    cohort_id: str,
    identity: Identity | None,
    engine: SyncEngine | None = None,
    clock: clock_gate.Clock | None = None,
) -> bool:
    """Add the identity to the cohort's member set.

    Joining twice is a no-op. The add is a single atomic store operation, so
    concurrent joins by different users never lose a member.

    Returns:
        True if the identity was added, False if it was already a member

    Raises:
        UnauthenticatedError: If no identity is given
        NotFoundError: If the cohort does not exist
        CohortExpiredError: If the cohort has ended
    """
    with span("cohort_service.join"):
        if identity is None:
            raise UnauthenticatedError("Sign in to join this cohort")

        cohort = await get_cohort(cohort_id=cohort_id)
        if cohort.has_member(identity.id):
            logger.debug("Already a member", extra={"cohort_id": cohort_id, "user_id": identity.id})
            return False

        if clock_gate.is_expired(cohort, clock_gate.read_clock(clock)):
            log_with_context(logger, "info", "Rejected join of expired cohort", cohort_id=cohort_id, user_id=identity.id)
            raise CohortExpiredError(f"Cohort {cohort_id} has ended")

        engine = engine or SyncEngine()
        try:
            added = await engine.dispatch(
                WriteIntent(
                    op=WriteOp.ADD_TO_SET,
                    kind=StreamKind.COHORT,
                    scope_id=cohort_id,
                    record_id=cohort_id,
                    field_name="members",
                    value=identity.id,
                    notify=((StreamKind.MEMBER_COHORTS, identity.id),),
                )
            )
        except RecordNotFoundError as e:
            raise NotFoundError(f"Cohort not found: {cohort_id}") from e

        if added:
            logger.info("Joined cohort", extra={"cohort_id": cohort_id, "user_id": identity.id})
        return added


async def authorize_write(
    *, cohort_id: str, identity: Identity | None, clock: clock_gate.Clock | None = None
) -> Cohort:
    """Check that `identity` may write to the cohort right now, against the stored cohort.

    `clock` is the caller's time source; the process wall clock if omitted.

    Raises:
        UnauthenticatedError: If no identity is given
        NotFoundError: If the cohort does not exist
        NotMemberError: If the identity is not a member
        CohortExpiredError: If the cohort has ended
    """
    if identity is None:
        raise UnauthenticatedError("Sign in to post in this cohort")

    cohort = await get_cohort(cohort_id=cohort_id)
    if not cohort.has_member(identity.id):
        log_with_context(logger, "info", "Rejected write by non-member", cohort_id=cohort_id, user_id=identity.id)
        raise NotMemberError(f"{identity.id} is not a member of cohort {cohort_id}")

    # Checked last so the gate is read as close to the write as possible
    if clock_gate.is_expired(cohort, clock_gate.read_clock(clock)):
        log_with_context(logger, "info", "Rejected write to expired cohort", cohort_id=cohort_id, user_id=identity.id)
        raise CohortExpiredError(f"Cohort {cohort_id} has ended")

    return cohort


async def list_member_cohorts(*, user_id: str) -> list[Cohort]:
    """List the cohorts a user belongs to, soonest-ending first."""
    with span("cohort_service.list_member_cohorts"):
        return await fetch_snapshot(StreamKind.MEMBER_COHORTS, user_id)

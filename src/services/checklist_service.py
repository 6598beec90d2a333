"""Checklist service: shared tasks per cohort."""

import logging

from src.core import db_client
from src.core.clock_gate import Clock
from src.core.db_client import DatabaseError, RecordNotFoundError
from src.core.errors import EmptyTextError, NotFoundError, SyncUnavailableError
from src.core.logging import span
from src.core.sync_engine import StreamKind, Subscription, SyncEngine, WriteIntent, WriteOp
from src.domain.task import Task
from src.domain.user import Identity
from src.services import cohort_service


logger = logging.getLogger(__name__)


async def add_task(
    *,
    cohort_id: str,
    author: Identity | None,
    text: str,
    engine: SyncEngine | None = None,
    clock: Clock | None = None,
) -> Task:
    """Add an incomplete task to a cohort's checklist.

    Raises:
        EmptyTextError: If the text is blank
        UnauthenticatedError: If no author is given
        NotMemberError: If the author is not a member
        CohortExpiredError: If the cohort has ended
    """
    with span("checklist_service.add_task"):
        text = text.strip()
        if not text:
            raise EmptyTextError("Task text cannot be empty")

        await cohort_service.authorize_write(cohort_id=cohort_id, identity=author, clock=clock)
        assert author is not None

        engine = engine or SyncEngine()
        record = await engine.dispatch(
            WriteIntent(
                op=WriteOp.CREATE,
                kind=StreamKind.TASKS,
                scope_id=cohort_id,
                data={
                    "cohort_id": cohort_id,
                    "text": text,
                    "is_completed": False,
                    "creator_id": author.id,
                },
            )
        )
        logger.info("Task added", extra={"cohort_id": cohort_id, "task_id": record["id"], "creator_id": author.id})
        return Task.model_validate(record)


async def toggle_task(
    *,
    cohort_id: str,
    identity: Identity | None,
    task_id: str,
    engine: SyncEngine | None = None,
    clock: Clock | None = None,
) -> Task:
    """Flip a task's completion flag in the store.

    The flip is evaluated against the stored value, not the caller's copy, so
    two members toggling at once leave the task where it started.

    Raises:
        UnauthenticatedError: If no identity is given
        NotMemberError: If the identity is not a member
        CohortExpiredError: If the cohort has ended
        NotFoundError: If the task does not exist in this cohort
    """
    with span("checklist_service.toggle_task"):
        await cohort_service.authorize_write(cohort_id=cohort_id, identity=identity, clock=clock)

        engine = engine or SyncEngine()
        try:
            task = await _get_task(cohort_id=cohort_id, task_id=task_id)
            record = await engine.dispatch(
                WriteIntent(
                    op=WriteOp.TOGGLE,
                    kind=StreamKind.TASKS,
                    scope_id=cohort_id,
                    record_id=task.id,
                    field_name="is_completed",
                )
            )
        except RecordNotFoundError as e:
            raise NotFoundError(f"Task not found: {task_id}") from e

        toggled = Task.model_validate(record)
        logger.info(
            "Task toggled",
            extra={"cohort_id": cohort_id, "task_id": task_id, "is_completed": toggled.is_completed},
        )
        return toggled


async def _get_task(*, cohort_id: str, task_id: str) -> Task:
    try:
        record = await db_client.get_record(collection="tasks", record_id=task_id)
    except DatabaseError as e:
        raise SyncUnavailableError(f"Could not read task {task_id}") from e
    task = Task.model_validate(record)
    if task.cohort_id != cohort_id:
        raise RecordNotFoundError(f"Task {task_id} is not in cohort {cohort_id}")
    return task


def subscribe(*, cohort_id: str, engine: SyncEngine) -> Subscription:
    """Open the live checklist of a cohort, in creation order."""
    return engine.subscribe(StreamKind.TASKS, cohort_id)

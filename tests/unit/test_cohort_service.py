"""Unit tests for cohort creation and the membership ledger."""

import asyncio
from datetime import timedelta

import pytest
from pydantic import ValidationError

from src.core.errors import CohortExpiredError, NotFoundError, UnauthenticatedError
from src.domain.user import Identity
from src.services import cohort_service


@pytest.mark.unit
class TestCreateCohort:
    """Tests for create_cohort."""

    async def test_creator_is_only_member(self, cohort, alice):
        """A new cohort has exactly its creator as member."""
        assert cohort.members == [alice.id]
        assert cohort.creator_id == alice.id
        assert cohort.created is not None

    async def test_trims_name_and_goal(self, db, frozen_clock, alice):
        """Name and goal are stored trimmed."""
        cohort = await cohort_service.create_cohort(
            identity=alice,
            name="  Morning Runs  ",
            goal="\tRun 5k\n",
            end_timestamp=frozen_clock.now + timedelta(days=1),
        )

        assert cohort.name == "Morning Runs"
        assert cohort.goal == "Run 5k"

    async def test_rejects_blank_name(self, db, frozen_clock, alice):
        """A whitespace-only name is rejected."""
        with pytest.raises(ValidationError, match="Cohort name cannot be empty"):
            await cohort_service.create_cohort(
                identity=alice, name="   ", goal="Run", end_timestamp=frozen_clock.now + timedelta(days=1)
            )

    async def test_rejects_long_goal(self, db, frozen_clock, alice):
        """Goals longer than 500 characters are rejected."""
        with pytest.raises(ValidationError, match="Goal too long"):
            await cohort_service.create_cohort(
                identity=alice, name="Runs", goal="x" * 501, end_timestamp=frozen_clock.now + timedelta(days=1)
            )

    async def test_rejects_past_end(self, db, frozen_clock, alice):
        """The end timestamp must lie in the future."""
        with pytest.raises(ValueError, match="must be in the future"):
            await cohort_service.create_cohort(
                identity=alice, name="Runs", goal="Run", end_timestamp=frozen_clock.now - timedelta(minutes=1)
            )

    async def test_requires_identity(self, db, frozen_clock):
        """Guests cannot create cohorts."""
        with pytest.raises(UnauthenticatedError):
            await cohort_service.create_cohort(
                identity=None, name="Runs", goal="Run", end_timestamp=frozen_clock.now + timedelta(days=1)
            )


@pytest.mark.unit
class TestJoin:
    """Tests for join and membership lookup."""

    async def test_join_adds_member(self, cohort, bob):
        """Joining adds the identity to the member set."""
        added = await cohort_service.join(cohort_id=cohort.id, identity=bob)

        stored = await cohort_service.get_cohort(cohort_id=cohort.id)
        assert added is True
        assert cohort_service.is_member(stored, bob.id)

    async def test_join_is_idempotent(self, cohort, bob):
        """Joining twice leaves the member set as after one join."""
        await cohort_service.join(cohort_id=cohort.id, identity=bob)
        again = await cohort_service.join(cohort_id=cohort.id, identity=bob)

        stored = await cohort_service.get_cohort(cohort_id=cohort.id)
        assert again is False
        assert stored.members.count(bob.id) == 1
        assert stored.member_count == 2

    async def test_concurrent_joins_keep_both(self, cohort, bob, carol):
        """Two users joining at once both end up as members."""
        await asyncio.gather(
            cohort_service.join(cohort_id=cohort.id, identity=bob),
            cohort_service.join(cohort_id=cohort.id, identity=carol),
        )

        stored = await cohort_service.get_cohort(cohort_id=cohort.id)
        assert set(stored.members) == {"user-alice", bob.id, carol.id}

    async def test_join_requires_identity(self, cohort):
        """Guests cannot join."""
        with pytest.raises(UnauthenticatedError):
            await cohort_service.join(cohort_id=cohort.id, identity=None)

    async def test_join_unknown_cohort(self, db, bob):
        """Joining a cohort that does not exist raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await cohort_service.join(cohort_id="999", identity=bob)

    async def test_join_after_expiry_rejected(self, cohort, frozen_clock, bob):
        """Joining an expired cohort fails and leaves members unchanged."""
        frozen_clock.advance(timedelta(days=6))

        with pytest.raises(CohortExpiredError):
            await cohort_service.join(cohort_id=cohort.id, identity=bob)

        stored = await cohort_service.get_cohort(cohort_id=cohort.id)
        assert stored.members == ["user-alice"]

    async def test_existing_member_join_after_expiry_is_noop(self, cohort, frozen_clock, alice):
        """An existing member re-joining an expired cohort is a no-op, not an error."""
        frozen_clock.advance(timedelta(days=6))

        assert await cohort_service.join(cohort_id=cohort.id, identity=alice) is False

    async def test_is_member_handles_guest(self, cohort):
        """A missing user id is never a member."""
        assert cohort_service.is_member(cohort, None) is False
        assert cohort_service.is_member(cohort, "user-alice") is True


@pytest.mark.unit
class TestListMemberCohorts:
    """Tests for the per-user cohort list."""

    async def test_lists_only_member_cohorts(self, db, frozen_clock, alice, bob):
        """Only cohorts the user belongs to are returned, soonest-ending first."""
        late = await cohort_service.create_cohort(
            identity=alice, name="Late", goal="g", end_timestamp=frozen_clock.now + timedelta(days=30)
        )
        soon = await cohort_service.create_cohort(
            identity=alice, name="Soon", goal="g", end_timestamp=frozen_clock.now + timedelta(days=2)
        )
        await cohort_service.create_cohort(
            identity=bob, name="Bob only", goal="g", end_timestamp=frozen_clock.now + timedelta(days=1)
        )

        cohorts = await cohort_service.list_member_cohorts(user_id=alice.id)

        assert [c.id for c in cohorts] == [soon.id, late.id]

    async def test_user_id_with_ampersands(self, db, frozen_clock):
        """Opaque user ids containing && still resolve their cohorts."""
        lead = Identity(id="team&&lead", display_name="Lead")
        created = await cohort_service.create_cohort(
            identity=lead, name="Leads", goal="g", end_timestamp=frozen_clock.now + timedelta(days=1)
        )

        cohorts = await cohort_service.list_member_cohorts(user_id=lead.id)

        assert [c.id for c in cohorts] == [created.id]

    async def test_unknown_user_has_no_cohorts(self, db):
        """A user in no cohort gets an empty list."""
        assert await cohort_service.list_member_cohorts(user_id="user-nobody") == []


@pytest.mark.unit
async def test_get_cohort_not_found(db: str, alice: Identity) -> None:
    """get_cohort raises NotFoundError for unknown ids."""
    with pytest.raises(NotFoundError):
        await cohort_service.get_cohort(cohort_id="999")

"""Pytest configuration and fixtures for unit tests."""

from datetime import timedelta

import pytest

from src.domain.cohort import Cohort
from src.domain.user import Identity
from src.services import cohort_service
from tests.unit.mocks import FakeIdentityProvider, FrozenClock


@pytest.fixture
async def cohort(db: str, frozen_clock: FrozenClock, alice: Identity) -> Cohort:
    """A cohort created by alice that ends five days after the frozen clock."""
    return await cohort_service.create_cohort(
        identity=alice,
        name="Morning Runs",
        goal="Run 5k every morning",
        end_timestamp=frozen_clock.now + timedelta(days=5),
    )


@pytest.fixture
def alice_provider(alice: Identity) -> FakeIdentityProvider:
    return FakeIdentityProvider(alice)


@pytest.fixture
def bob_provider(bob: Identity) -> FakeIdentityProvider:
    return FakeIdentityProvider(bob)


@pytest.fixture
def guest_provider() -> FakeIdentityProvider:
    """Provider with nobody signed in."""
    return FakeIdentityProvider(None, signed_in=False)

"""User service for sign-in bookkeeping."""

import logging

from src.core import db_client
from src.core.logging import span
from src.domain.user import Identity, UserProfile


logger = logging.getLogger(__name__)


async def record_sign_in(*, identity: Identity) -> UserProfile:
    """Write the user's profile on first sign-in.

    Later sign-ins leave the stored profile untouched, even if the identity
    provider now reports a different name or avatar.

    Args:
        identity: Identity returned by the provider

    Returns:
        The stored profile
    """
    with span("user_service.record_sign_in"):
        existing = await get_profile(user_id=identity.id)
        if existing is not None:
            return existing

        try:
            record = await db_client.create_record(
                collection="users",
                data={
                    "id": identity.id,
                    "display_name": identity.display_name or "",
                    "email": identity.email,
                    "photo_url": identity.photo_url,
                },
            )
        except db_client.DatabaseError:
            # Another sign-in for the same user won the insert
            profile = await get_profile(user_id=identity.id)
            if profile is None:
                raise
            return profile

        logger.info("Created user profile", extra={"user_id": identity.id})
        return UserProfile.model_validate(record)


async def get_profile(*, user_id: str) -> UserProfile | None:
    """Get a user's stored profile, or None if they never signed in."""
    with span("user_service.get_profile"):
        try:
            record = await db_client.get_record(collection="users", record_id=user_id)
        except db_client.RecordNotFoundError:
            return None
        return UserProfile.model_validate(record)

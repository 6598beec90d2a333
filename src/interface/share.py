"""Invite links and share-sheet payloads for a cohort."""

from pydantic import BaseModel, Field

from src.core.config import settings
from src.domain.cohort import Cohort


class SharePayload(BaseModel):
    """Content handed to a native share sheet (or copied to the clipboard)."""

    title: str = Field(..., description="Share sheet title")
    text: str = Field(..., description="Invitation text")
    url: str = Field(..., description="Join link")


def join_url(cohort_id: str, *, origin: str | None = None) -> str:
    """Build the invite link for a cohort."""
    base = (origin or settings.app_origin).rstrip("/")
    return f"{base}/cohort/{cohort_id}"


def share_payload(cohort: Cohort, *, origin: str | None = None) -> SharePayload:
    return SharePayload(
        title=cohort.name,
        text=f"Join my accountability group: {cohort.name}",
        url=join_url(cohort.id, origin=origin),
    )

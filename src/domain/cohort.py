"""Cohort domain models."""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from src.core.config import Constants


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Cohort(BaseModel):
    """Cohort data transfer object."""

    id: str = Field(..., description="Unique cohort ID assigned by the store")
    name: str = Field(..., max_length=Constants.MAX_COHORT_NAME_LENGTH, description="Cohort name")
    goal: str = Field(..., max_length=Constants.MAX_COHORT_GOAL_LENGTH, description="Shared goal description")
    end_timestamp: datetime = Field(..., description="Moment after which the cohort is read-only")
    creator_id: str = Field(..., description="User ID of the creator")
    members: list[str] = Field(..., min_length=1, description="Member user IDs (set semantics, only grows)")
    created: datetime | None = Field(default=None, description="Creation timestamp assigned by the store")

    @field_validator("end_timestamp", "created")
    @classmethod
    def normalize_timezone(cls, v: datetime | None) -> datetime | None:
        """Store and compare every timestamp in UTC."""
        return ensure_utc(v) if v is not None else None

    @property
    def member_count(self) -> int:
        return len(self.members)

    def has_member(self, user_id: str | None) -> bool:
        return user_id is not None and user_id in self.members


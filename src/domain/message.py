"""Chat message domain model."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.domain.cohort import ensure_utc


class Message(BaseModel):
    """Chat message data transfer object. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique message ID assigned by the store")
    cohort_id: str = Field(..., description="Cohort this message belongs to")
    text: str = Field(..., min_length=1, description="Trimmed message text")
    sender_id: str = Field(..., description="User ID of the sender")
    sender_name: str = Field(..., description="Sender display name captured at send time")
    timestamp: datetime = Field(..., description="Store-assigned write time")

    @field_validator("timestamp")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return ensure_utc(v)

"""Checklist task domain model."""

from pydantic import BaseModel, Field


class Task(BaseModel):
    """Shared checklist item data transfer object."""

    id: str = Field(..., description="Unique task ID assigned by the store")
    cohort_id: str = Field(..., description="Cohort this task belongs to")
    text: str = Field(..., min_length=1, description="Trimmed task text")
    is_completed: bool = Field(default=False, description="Completion flag, toggled by any member")
    creator_id: str = Field(..., description="User ID of the creator")

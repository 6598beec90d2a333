"""Pydantic models for creating records in database."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from src.core.config import Constants
from src.domain.cohort import ensure_utc


class CohortCreate(BaseModel):
    """Pydantic model for creating a cohort record."""

    name: str = Field(..., description="Cohort name")
    goal: str = Field(..., description="Shared goal description")
    end_timestamp: datetime = Field(..., description="End of the cohort")
    creator_id: str = Field(..., min_length=1, description="User ID of the creator")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name is non-empty and within the length limit after trimming."""
        v = v.strip()
        if not v:
            raise ValueError("Cohort name cannot be empty")
        if len(v) > Constants.MAX_COHORT_NAME_LENGTH:
            raise ValueError(f"Cohort name too long (max {Constants.MAX_COHORT_NAME_LENGTH} characters)")
        return v

    @field_validator("goal")
    @classmethod
    def validate_goal(cls, v: str) -> str:
        """Validate goal is non-empty and within the length limit after trimming."""
        v = v.strip()
        if not v:
            raise ValueError("Goal cannot be empty")
        if len(v) > Constants.MAX_COHORT_GOAL_LENGTH:
            raise ValueError(f"Goal too long (max {Constants.MAX_COHORT_GOAL_LENGTH} characters)")
        return v

    @field_validator("end_timestamp")
    @classmethod
    def normalize_end(cls, v: datetime) -> datetime:
        return ensure_utc(v)

"""Domain models and DTOs."""

from src.domain.cohort import Cohort
from src.domain.create_models import CohortCreate
from src.domain.message import Message
from src.domain.task import Task
from src.domain.user import Identity, UserProfile


__all__ = [
    "Cohort",
    "CohortCreate",
    "Identity",
    "Message",
    "Task",
    "UserProfile",
]

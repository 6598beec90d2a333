from src.services import (
    checklist_service,
    cohort_service,
    message_service,
    user_service,
)


__all__ = [
    "checklist_service",
    "cohort_service",
    "message_service",
    "user_service",
]

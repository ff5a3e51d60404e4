"""Notification events handed to the notification service."""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class NotificationEvent(str, Enum):
    OPENED = "opened"
    CLOSED = "closed"
    GRADED = "graded"


def course_audience(course_id: uuid.UUID) -> str:
    """Everyone enrolled in the course."""
    return f"course:{course_id}"


def student_audience(student_id: uuid.UUID) -> str:
    return f"student:{student_id}"


class NotificationPayload(BaseModel):
    """Body posted to the notification webhook."""

    event: NotificationEvent
    quiz_id: uuid.UUID
    audience: str
    attempt_id: uuid.UUID | None = None
    emitted_at: datetime

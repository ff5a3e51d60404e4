"""Notifier — hands quiz events to the notification service via Celery.

Fire-and-forget: a broker outage is logged and swallowed so it can never
roll back an attempt transition or stall the scheduler.
"""

import logging
import uuid

from quiz_engine.core.clock import get_clock
from quiz_engine.schemas.notification import NotificationEvent, NotificationPayload

logger = logging.getLogger(__name__)


class Notifier:
    def notify(
        self,
        event: NotificationEvent,
        quiz_id: uuid.UUID,
        audience: str,
        attempt_id: uuid.UUID | None = None,
    ) -> None:
        from quiz_engine.tasks import send_quiz_notification

        payload = NotificationPayload(
            event=event,
            quiz_id=quiz_id,
            audience=audience,
            attempt_id=attempt_id,
            emitted_at=get_clock().now(),
        )
        try:
            send_quiz_notification.delay(payload.model_dump(mode="json"))
        except Exception as exc:
            logger.warning(
                "Could not queue %s notification for quiz %s: %s", event.value, quiz_id, exc
            )


_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    """Return a singleton Notifier (FastAPI dependency)."""
    global _notifier
    if _notifier is None:
        _notifier = Notifier()
    return _notifier

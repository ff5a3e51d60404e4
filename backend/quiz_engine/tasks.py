"""Background tasks executed by Celery workers."""

import logging

import httpx

from quiz_engine.celery_app import celery_app
from quiz_engine.config import settings
from quiz_engine.schemas.notification import NotificationPayload

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="quiz_engine.send_notification", max_retries=3)
def send_quiz_notification(self, payload: dict) -> dict:
    """Hand a quiz event to the notification service.

    Delivery (push, WhatsApp, in-app) belongs to that service; without a
    configured webhook the event is only logged.
    """
    event = NotificationPayload.model_validate(payload)
    if not settings.NOTIFICATION_WEBHOOK_URL:
        logger.info(
            "Notification %s for quiz %s → %s (no webhook configured)",
            event.event.value, event.quiz_id, event.audience,
        )
        return {"success": True, "delivered": False}

    try:
        response = httpx.post(
            settings.NOTIFICATION_WEBHOOK_URL,
            json=event.model_dump(mode="json"),
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning(
            "Notification %s for quiz %s failed: %s", event.event.value, event.quiz_id, exc
        )
        # Retry with exponential back-off (10s, 30s, 90s)
        raise self.retry(exc=exc, countdown=10 * (3**self.request.retries))

    return {"success": True, "delivered": True, "status_code": response.status_code}


@celery_app.task(name="quiz_engine.tick_schedules")
def tick_schedules() -> dict:
    """Fire due quiz start/end timers (beat-driven alternative to the poller thread)."""
    from quiz_engine.services.scheduler import get_scheduler

    report = get_scheduler().tick()
    return report.as_dict()

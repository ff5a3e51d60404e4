"""Tests for notification hand-off, Celery tasks, the answer rate limiter and health."""

import uuid
from unittest.mock import MagicMock, patch

import httpx
import pytest
import redis
from fastapi import HTTPException

from quiz_engine.config import settings
from quiz_engine.schemas.notification import NotificationEvent, course_audience, student_audience
from quiz_engine.services import rate_limiter
from quiz_engine.services.notifications import Notifier
from quiz_engine.services.scheduler import TickReport
from quiz_engine.tasks import send_quiz_notification, tick_schedules


def _payload(**overrides) -> dict:
    payload = {
        "event": "graded",
        "quiz_id": str(uuid.uuid4()),
        "audience": student_audience(uuid.uuid4()),
        "attempt_id": str(uuid.uuid4()),
        "emitted_at": "2030-01-01T09:00:00Z",
    }
    payload.update(overrides)
    return payload


# ── Notifier ──────────────────────────────────────────────────────────────────


def test_notifier_queues_celery_task(mock_celery_tasks, clock):
    quiz_id = uuid.uuid4()
    Notifier().notify(NotificationEvent.OPENED, quiz_id, course_audience(quiz_id))

    mock_celery_tasks.delay.assert_called_once()
    payload = mock_celery_tasks.delay.call_args.args[0]
    assert payload["event"] == "opened"
    assert payload["quiz_id"] == str(quiz_id)
    assert payload["audience"] == f"course:{quiz_id}"
    assert payload["attempt_id"] is None
    assert payload["emitted_at"].startswith("2030-01-01T09:00:00")


def test_notifier_swallows_broker_errors(mock_celery_tasks):
    mock_celery_tasks.delay.side_effect = ConnectionError("broker down")
    # Must not raise
    Notifier().notify(NotificationEvent.CLOSED, uuid.uuid4(), "course:x")


# ── Tasks ─────────────────────────────────────────────────────────────────────


def test_send_notification_without_webhook(monkeypatch):
    monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", "")
    result = send_quiz_notification(_payload())
    assert result == {"success": True, "delivered": False}


def test_send_notification_posts_to_webhook(monkeypatch):
    monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", "http://notify.local/hooks/quiz")
    response = MagicMock(status_code=202)
    with patch("quiz_engine.tasks.httpx.post", return_value=response) as post:
        result = send_quiz_notification(_payload())

    assert result["delivered"] is True
    assert post.call_args.args[0] == "http://notify.local/hooks/quiz"
    assert post.call_args.kwargs["json"]["event"] == "graded"


def test_send_notification_failure_is_raised_for_retry(monkeypatch):
    monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", "http://notify.local/hooks/quiz")
    with patch("quiz_engine.tasks.httpx.post", side_effect=httpx.ConnectError("refused")):
        with pytest.raises(httpx.HTTPError):
            send_quiz_notification(_payload())


def test_tick_task_reports():
    fake = MagicMock()
    fake.tick.return_value = TickReport(fired=2, failed=1, expired=3)
    with patch("quiz_engine.services.scheduler.get_scheduler", return_value=fake):
        assert tick_schedules() == {"fired": 2, "failed": 1, "expired": 3}


# ── Rate limiter ──────────────────────────────────────────────────────────────


def test_rate_limit_disabled_by_default():
    assert rate_limiter.allow("rl:answers:u:test") is True


def test_rate_limit_blocks_when_bucket_empty(monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_ANSWERS_RPM", 60)
    fake_redis = MagicMock()
    fake_redis.eval.return_value = 0
    with patch.object(rate_limiter, "_get_redis", return_value=fake_redis):
        with pytest.raises(HTTPException) as exc_info:
            rate_limiter.enforce_answer_rate_limit(uuid.uuid4())
    assert exc_info.value.status_code == 429


def test_rate_limit_fails_open_when_redis_down(monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_ANSWERS_RPM", 60)
    fake_redis = MagicMock()
    fake_redis.eval.side_effect = redis.ConnectionError("no redis")
    with patch.object(rate_limiter, "_get_redis", return_value=fake_redis):
        assert rate_limiter.allow("rl:answers:u:test") is True


# ── Health ────────────────────────────────────────────────────────────────────


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "service": "quiz-engine",
        "scheduler_running": False,
    }

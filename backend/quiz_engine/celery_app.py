"""Celery application — notification delivery and the scheduler beat."""

from celery import Celery

from quiz_engine.config import settings

celery_app = Celery(
    "quiz_engine",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # Run tasks synchronously in-process when True (dev default, no Redis needed).
    # Set CELERY_TASK_ALWAYS_EAGER=false in .env when running a real worker.
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_eager_propagates=True,  # Raise task exceptions immediately when eager
    # Only used when the in-process poller is disabled (SCHEDULER_ENABLED=false)
    # and a beat process drives the availability scheduler instead.
    beat_schedule={
        "tick-quiz-schedules": {
            "task": "quiz_engine.tick_schedules",
            "schedule": settings.SCHEDULER_POLL_SECONDS,
        },
    },
)

celery_app.autodiscover_tasks(["quiz_engine"])

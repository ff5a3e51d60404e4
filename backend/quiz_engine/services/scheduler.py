"""Availability scheduler — fires quiz start/end edges on time.

Timers live in the ``quiz_schedule_timers`` table, one row per quiz and
edge, so a restart loses nothing: whatever became due while the process was
down fires on the first tick afterwards. Availability itself is always
computed from the quiz row (see ``services.availability``); a late tick only
delays notifications and auto-close, never the "can I start?" answer.

Edges:
  - ``start`` at ``available_from``: "opened" notification to the course,
    then (re-)arm the ``end`` edge.
  - ``end`` at ``available_until``: every in-progress attempt is forced
    through a timeout submit, then a "closed" notification. If any attempt
    fails to close the timer stays armed and the next tick retries.

The poller is a daemon thread sleeping on a ``threading.Event`` until the
next fire instant (capped at the poll interval); ``arm`` sets the event so a
freshly scheduled edge is never waited on for a whole interval.
"""

import logging
import threading
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from quiz_engine.config import settings
from quiz_engine.core.clock import Clock, get_clock
from quiz_engine.db.models import Quiz, QuizScheduleTimer, TimerEdgeEnum
from quiz_engine.db.session import get_session_factory
from quiz_engine.schemas.notification import NotificationEvent, course_audience
from quiz_engine.services.analytics import recompute_quiz_analytics
from quiz_engine.services.attempts import close_quiz_attempts, expire_overdue_attempts
from quiz_engine.services.availability import is_available
from quiz_engine.services.notifications import Notifier, get_notifier

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 1000


@dataclass
class TickReport:
    fired: int = 0
    failed: int = 0
    expired: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def _desired_edges(quiz: Quiz, now: datetime) -> dict[TimerEdgeEnum, datetime]:
    """Future edges of a published quiz; past-due bounds arm nothing."""
    if not quiz.is_published:
        return {}
    edges = {}
    if quiz.available_from is not None and quiz.available_from > now:
        edges[TimerEdgeEnum.START] = quiz.available_from
    if quiz.available_until is not None and quiz.available_until > now:
        edges[TimerEdgeEnum.END] = quiz.available_until
    return edges


class AvailabilityScheduler:
    """Keyed, persisted one-shot timers per quiz edge plus the poller that fires them."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        poll_interval_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._notifier = notifier
        self._poll_interval = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else settings.SCHEDULER_POLL_SECONDS
        )
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        # One tick at a time, whether from the poller, beat or a test
        self._tick_lock = threading.Lock()

    # ── collaborators (resolved lazily so overrides made after import apply) ──

    def _now(self) -> datetime:
        return (self._clock or get_clock()).now()

    def _session(self) -> Session:
        factory = self._session_factory or get_session_factory()
        return factory()

    @property
    def notifier(self) -> Notifier:
        return self._notifier or get_notifier()

    # ── timer table ───────────────────────────────────────────────────────

    def timers(self, db: Session, quiz_id: uuid.UUID) -> dict[TimerEdgeEnum, datetime]:
        rows = db.query(QuizScheduleTimer).filter(QuizScheduleTimer.quiz_id == quiz_id)
        return {row.edge: row.fire_at for row in rows}

    def _upsert(
        self, db: Session, quiz_id: uuid.UUID, edges: dict[TimerEdgeEnum, datetime]
    ) -> None:
        existing = {
            row.edge: row
            for row in db.query(QuizScheduleTimer).filter(QuizScheduleTimer.quiz_id == quiz_id)
        }
        for edge, row in existing.items():
            if edge not in edges:
                db.delete(row)
        for edge, fire_at in edges.items():
            row = existing.get(edge)
            if row is None:
                db.add(QuizScheduleTimer(quiz_id=quiz_id, edge=edge, fire_at=fire_at))
            else:
                row.fire_at = fire_at
                row.failure_count = 0
                row.last_error = None

    def arm(self, db: Session, quiz: Quiz, now: datetime | None = None) -> dict[TimerEdgeEnum, datetime]:
        """Replace the quiz's timers with its current future edges and commit.

        Re-arming is idempotent: each (quiz, edge) row is updated in place,
        never duplicated.
        """
        edges = _desired_edges(quiz, now or self._now())
        self._upsert(db, quiz.id, edges)
        db.commit()
        if edges:
            logger.info(
                "Armed quiz %s: %s",
                quiz.id, ", ".join(f"{e.value}@{t.isoformat()}" for e, t in edges.items()),
            )
            self._wake.set()
        return edges

    def cancel(self, db: Session, quiz_id: uuid.UUID) -> int:
        """Remove every timer of a quiz. Returns how many were removed."""
        removed = (
            db.query(QuizScheduleTimer)
            .filter(QuizScheduleTimer.quiz_id == quiz_id)
            .delete(synchronize_session="fetch")
        )
        db.commit()
        if removed:
            logger.info("Cancelled %d timer(s) for quiz %s", removed, quiz_id)
        return removed

    def bootstrap(self) -> int:
        """Arm published quizzes that have future edges but no persisted timers.

        Quizzes that already have rows keep them untouched, including overdue
        ones, so edges missed while the process was down still fire.
        """
        armed = 0
        now = self._now()
        with self._session() as db:
            known = {quiz_id for (quiz_id,) in db.query(QuizScheduleTimer.quiz_id).distinct()}
            quizzes = db.query(Quiz).filter(Quiz.is_published.is_(True)).all()
            for quiz in quizzes:
                if quiz.id in known or not _desired_edges(quiz, now):
                    continue
                self.arm(db, quiz, now)
                armed += 1
        logger.info("Scheduler bootstrap: armed %d quiz(zes)", armed)
        return armed

    # ── firing ────────────────────────────────────────────────────────────

    def tick(self, now: datetime | None = None, db: Session | None = None) -> TickReport:
        """Fire every timer due at *now*, then sweep attempts past their time limit."""
        with self._tick_lock:
            now = now or self._now()
            own_session = db is None
            db = db or self._session()
            report = TickReport()
            try:
                due = [
                    (row.id, row.quiz_id, row.edge)
                    for row in db.query(QuizScheduleTimer)
                    .filter(QuizScheduleTimer.fire_at <= now)
                    .order_by(QuizScheduleTimer.fire_at)
                ]
                for timer_id, quiz_id, edge in due:
                    if self._fire(db, timer_id, quiz_id, edge, now):
                        report.fired += 1
                    else:
                        report.failed += 1
                report.expired = expire_overdue_attempts(db, now, self.notifier)
            finally:
                if own_session:
                    db.close()
            if due:
                logger.info(
                    "Scheduler tick at %s: fired=%d failed=%d expired=%d",
                    now.isoformat(), report.fired, report.failed, report.expired,
                )
            return report

    def _fire(
        self,
        db: Session,
        timer_id: uuid.UUID,
        quiz_id: uuid.UUID,
        edge: TimerEdgeEnum,
        now: datetime,
    ) -> bool:
        quiz = db.get(Quiz, quiz_id)
        if quiz is None:
            self._drop_timer(db, timer_id)
            return True
        try:
            if edge is TimerEdgeEnum.START:
                self._fire_start(db, quiz, timer_id, now)
                return True
            return self._fire_end(db, quiz, timer_id, now)
        except Exception as exc:
            db.rollback()
            logger.exception("Timer %s for quiz %s failed", edge.value, quiz_id)
            self._record_failure(db, timer_id, str(exc))
            return False

    def _fire_start(self, db: Session, quiz: Quiz, timer_id: uuid.UUID, now: datetime) -> None:
        # Consumes the start row and re-arms end in one write
        edges = {}
        if quiz.available_until is not None and quiz.available_until > now:
            edges[TimerEdgeEnum.END] = quiz.available_until
        self._upsert(db, quiz.id, edges)
        db.commit()
        if is_available(quiz, now):
            logger.info("Quiz %s is now open", quiz.id)
            self.notifier.notify(NotificationEvent.OPENED, quiz.id, course_audience(quiz.course_id))

    def _fire_end(self, db: Session, quiz: Quiz, timer_id: uuid.UUID, now: datetime) -> bool:
        failures = close_quiz_attempts(db, quiz.id, now, self.notifier)
        if failures:
            summary = "; ".join(f"{attempt_id}: {error}" for attempt_id, error in failures)
            self._record_failure(db, timer_id, summary)
            return False
        self._drop_timer(db, timer_id)
        logger.info("Quiz %s is now closed", quiz.id)
        self.notifier.notify(NotificationEvent.CLOSED, quiz.id, course_audience(quiz.course_id))
        recompute_quiz_analytics(db, quiz.id, now)
        return True

    def _drop_timer(self, db: Session, timer_id: uuid.UUID) -> None:
        row = db.get(QuizScheduleTimer, timer_id)
        if row is not None:
            db.delete(row)
            db.commit()

    def _record_failure(self, db: Session, timer_id: uuid.UUID, error: str) -> None:
        row = db.get(QuizScheduleTimer, timer_id)
        if row is None:
            return
        row.failure_count = (row.failure_count or 0) + 1
        row.last_error = error[:_MAX_ERROR_LENGTH]
        db.commit()
        logger.warning(
            "Timer %s for quiz %s kept for retry (failures=%d)",
            row.edge.value, row.quiz_id, row.failure_count,
        )

    # ── poller thread ─────────────────────────────────────────────────────

    def _seconds_until_next_fire(self) -> float:
        with self._session() as db:
            next_fire = (
                db.query(QuizScheduleTimer.fire_at)
                .order_by(QuizScheduleTimer.fire_at)
                .limit(1)
                .scalar()
            )
        if next_fire is None:
            return self._poll_interval
        wait = (next_fire - self._now()).total_seconds()
        return max(0.0, min(wait, self._poll_interval))

    def _run(self) -> None:
        logger.info("Scheduler poller started (interval=%.1fs)", self._poll_interval)
        while not self._stop.is_set():
            try:
                self.tick()
                wait = self._seconds_until_next_fire()
            except Exception:
                logger.exception("Scheduler tick failed")
                wait = self._poll_interval
            self._wake.wait(wait)
            self._wake.clear()
        logger.info("Scheduler poller stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="quiz-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


_scheduler: AvailabilityScheduler | None = None


def get_scheduler() -> AvailabilityScheduler:
    """Return the process-wide scheduler (FastAPI dependency)."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AvailabilityScheduler()
    return _scheduler

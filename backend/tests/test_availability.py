"""Unit tests for availability windows and countdowns."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from quiz_engine.services.availability import (
    AvailabilityStatus,
    accepts_new_attempts,
    availability_status,
    in_window,
    is_available,
    time_until_end,
    time_until_start,
)

NOW = datetime(2030, 5, 1, 12, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


@dataclass
class Window:
    is_published: bool = True
    available_from: datetime | None = None
    available_until: datetime | None = None
    due_date: datetime | None = None


def test_unbounded_published_quiz_is_always_available():
    assert is_available(Window(), NOW)
    assert availability_status(Window(), NOW) is AvailabilityStatus.AVAILABLE


def test_unpublished_quiz_is_never_available():
    quiz = Window(is_published=False, available_from=NOW - HOUR, available_until=NOW + HOUR)
    assert in_window(quiz, NOW)
    assert not is_available(quiz, NOW)
    assert availability_status(quiz, NOW) is AvailabilityStatus.UNPUBLISHED


@pytest.mark.parametrize(
    "now, expected",
    [
        (NOW - timedelta(seconds=1), False),
        (NOW, True),
        (NOW + HOUR, True),
        (NOW + HOUR + timedelta(seconds=1), False),
    ],
)
def test_bounds_are_inclusive(now, expected):
    quiz = Window(available_from=NOW, available_until=NOW + HOUR)
    assert is_available(quiz, now) is expected


def test_statuses_over_time():
    quiz = Window(available_from=NOW, available_until=NOW + 3 * HOUR, due_date=NOW + HOUR)
    assert availability_status(quiz, NOW - HOUR) is AvailabilityStatus.NOT_YET_AVAILABLE
    assert availability_status(quiz, NOW) is AvailabilityStatus.AVAILABLE
    assert availability_status(quiz, NOW + 2 * HOUR) is AvailabilityStatus.OVERDUE
    assert availability_status(quiz, NOW + 4 * HOUR) is AvailabilityStatus.NO_LONGER_AVAILABLE


def test_overdue_quiz_can_still_be_taken():
    quiz = Window(due_date=NOW - HOUR)
    assert is_available(quiz, NOW)


def test_no_new_attempts_at_closing_instant():
    quiz = Window(available_from=NOW, available_until=NOW + HOUR)
    assert is_available(quiz, NOW + HOUR)
    assert accepts_new_attempts(quiz, NOW)
    assert not accepts_new_attempts(quiz, NOW + HOUR)
    assert not accepts_new_attempts(Window(is_published=False), NOW)


class TestCountdowns:
    def test_time_until_start(self):
        quiz = Window(available_from=NOW + HOUR)
        countdown = time_until_start(quiz, NOW)
        assert countdown.seconds == 3600
        assert countdown.delta == HOUR

    def test_no_countdown_once_started_or_unbounded(self):
        assert time_until_start(Window(available_from=NOW), NOW) is None
        assert time_until_start(Window(), NOW) is None

    def test_time_until_end(self):
        quiz = Window(available_until=NOW + 90 * timedelta(minutes=1))
        assert time_until_end(quiz, NOW).seconds == 5400
        assert time_until_end(quiz, NOW + 2 * HOUR) is None
        assert time_until_end(Window(), NOW) is None

"""Availability — the source of truth for "can this quiz be taken now?".

Pure functions of ``is_published`` and the schedule bounds. The scheduler's
timers only trigger side effects (notifications, auto-close); a missed tick
never changes what these functions return.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol


class Schedulable(Protocol):
    is_published: bool
    available_from: datetime | None
    available_until: datetime | None
    due_date: datetime | None


class AvailabilityStatus(str, Enum):
    UNPUBLISHED = "unpublished"
    NOT_YET_AVAILABLE = "not_yet_available"
    AVAILABLE = "available"
    OVERDUE = "overdue"
    NO_LONGER_AVAILABLE = "no_longer_available"


def in_window(quiz: Schedulable, now: datetime) -> bool:
    """``now`` inside ``[available_from, available_until]`` (both inclusive, both optional)."""
    if quiz.available_from is not None and now < quiz.available_from:
        return False
    if quiz.available_until is not None and now > quiz.available_until:
        return False
    return True


def is_available(quiz: Schedulable, now: datetime) -> bool:
    """An unpublished quiz is never available, whatever its schedule says."""
    return bool(quiz.is_published) and in_window(quiz, now)


def accepts_new_attempts(quiz: Schedulable, now: datetime) -> bool:
    """Like ``is_available`` but closed at ``available_until`` itself.

    An attempt started at the closing instant would already be past its
    deadline.
    """
    if quiz.available_until is not None and now >= quiz.available_until:
        return False
    return is_available(quiz, now)


def availability_status(quiz: Schedulable, now: datetime) -> AvailabilityStatus:
    if not quiz.is_published:
        return AvailabilityStatus.UNPUBLISHED
    if quiz.available_from is not None and now < quiz.available_from:
        return AvailabilityStatus.NOT_YET_AVAILABLE
    if quiz.available_until is not None and now > quiz.available_until:
        return AvailabilityStatus.NO_LONGER_AVAILABLE
    if quiz.due_date is not None and now > quiz.due_date:
        return AvailabilityStatus.OVERDUE
    return AvailabilityStatus.AVAILABLE


@dataclass(frozen=True)
class Countdown:
    seconds: float

    @property
    def delta(self) -> timedelta:
        return timedelta(seconds=self.seconds)


def time_until_start(quiz: Schedulable, now: datetime) -> Countdown | None:
    if quiz.available_from is None or quiz.available_from <= now:
        return None
    return Countdown((quiz.available_from - now).total_seconds())


def time_until_end(quiz: Schedulable, now: datetime) -> Countdown | None:
    if quiz.available_until is None or quiz.available_until <= now:
        return None
    return Countdown((quiz.available_until - now).total_seconds())

"""Ownership and role checks shared by the quiz and attempt services."""

from quiz_engine.core.errors import Forbidden
from quiz_engine.db.models import Attempt, Quiz, RoleEnum, User

_STAFF = (RoleEnum.INSTRUCTOR, RoleEnum.ADMIN)


def is_staff(user: User) -> bool:
    return user.role in _STAFF


def can_manage_quiz(user: User, quiz: Quiz) -> bool:
    """Admins manage every quiz; instructors only the ones they created."""
    if user.role is RoleEnum.ADMIN:
        return True
    return user.role is RoleEnum.INSTRUCTOR and quiz.created_by == user.id


def ensure_quiz_manager(user: User, quiz: Quiz) -> None:
    if not can_manage_quiz(user, quiz):
        raise Forbidden("Not authorized to manage this quiz")


def ensure_attempt_owner(user: User, attempt: Attempt) -> None:
    if attempt.student_id != user.id:
        raise Forbidden("Not authorized to modify this attempt")


def ensure_can_view_attempt(user: User, attempt: Attempt) -> None:
    if attempt.student_id == user.id or can_manage_quiz(user, attempt.quiz):
        return
    raise Forbidden("Not authorized to view this attempt")

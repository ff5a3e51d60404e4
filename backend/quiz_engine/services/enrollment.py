"""Enrollment eligibility — may this student attempt quizzes in this course?"""

import uuid

from sqlalchemy.orm import Session

from quiz_engine.db.models import Enrollment, EnrollmentStatusEnum

ELIGIBLE_STATUSES = (
    EnrollmentStatusEnum.ACTIVE,
    EnrollmentStatusEnum.APPROVED,
    EnrollmentStatusEnum.COMPLETED,
)


class EnrollmentChecker:
    """Reads the ``enrollments`` table owned by the enrollment subsystem."""

    def is_enrolled(self, db: Session, student_id: uuid.UUID, course_id: uuid.UUID) -> bool:
        row = (
            db.query(Enrollment.id)
            .filter(
                Enrollment.student_id == student_id,
                Enrollment.course_id == course_id,
                Enrollment.status.in_(ELIGIBLE_STATUSES),
            )
            .first()
        )
        return row is not None


_checker: EnrollmentChecker | None = None


def get_enrollment_checker() -> EnrollmentChecker:
    global _checker
    if _checker is None:
        _checker = EnrollmentChecker()
    return _checker

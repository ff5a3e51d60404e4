"""User registration, login, profile and enrollment routes.

Identity and enrollment are owned by other platform services; these routes
are the minimal surface the engine needs to authenticate callers and check
course eligibility.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from quiz_engine.api.deps import get_current_user, require_staff
from quiz_engine.core.security import create_access_token, hash_password, verify_password
from quiz_engine.db.models import Enrollment, EnrollmentStatusEnum, RoleEnum, User
from quiz_engine.db.session import get_db
from quiz_engine.schemas.user import (
    AuthResponse,
    EnrollmentCreate,
    EnrollmentRead,
    UserCreate,
    UserLogin,
    UserRead,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(body: UserCreate, db: Session = Depends(get_db)):
    """Create a student, instructor or admin account."""
    existing = db.query(User).filter(User.email == body.email).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )
    try:
        hashed = hash_password(body.password)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    user = User(
        email=body.email,
        hashed_password=hashed,
        full_name=body.full_name,
        role=RoleEnum(body.role.value),
        branch_id=body.branch_id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered %s %s", user.role.value, user.id)

    token = create_access_token(user.id, user.role.value)
    return AuthResponse(access_token=token, user=UserRead.model_validate(user))


@router.post("/login", response_model=AuthResponse)
def login(body: UserLogin, db: Session = Depends(get_db)):
    """Authenticate and return a JWT access token + user profile."""
    user = db.query(User).filter(User.email == body.email).first()
    if not user or not verify_password(body.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account deactivated",
        )

    token = create_access_token(user.id, user.role.value)
    return AuthResponse(access_token=token, user=UserRead.model_validate(user))


@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)):
    """Return the authenticated user's profile."""
    return current_user


@router.put(
    "/{user_id}/enrollments",
    response_model=EnrollmentRead,
)
def upsert_enrollment(
    user_id: uuid.UUID,
    body: EnrollmentCreate,
    _staff: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """Record (or change) a student's enrollment in a course."""
    student = db.get(User, user_id)
    if student is None or student.role is not RoleEnum.STUDENT:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")

    enrollment = (
        db.query(Enrollment)
        .filter(Enrollment.student_id == user_id, Enrollment.course_id == body.course_id)
        .first()
    )
    if enrollment is None:
        enrollment = Enrollment(student_id=user_id, course_id=body.course_id)
        db.add(enrollment)
    enrollment.status = EnrollmentStatusEnum(body.status.value)
    db.commit()
    db.refresh(enrollment)
    return enrollment

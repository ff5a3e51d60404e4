"""API route package — imports all routers for main.py."""

from quiz_engine.api.health import router as health_router  # noqa: F401
from quiz_engine.api.users import router as users_router  # noqa: F401
from quiz_engine.api.attempts import router as attempts_router  # noqa: F401
from quiz_engine.api.quizzes import router as quizzes_router  # noqa: F401

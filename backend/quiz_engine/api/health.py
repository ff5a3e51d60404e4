"""Health check endpoint."""

from fastapi import APIRouter, Depends

from quiz_engine.services.scheduler import AvailabilityScheduler, get_scheduler

router = APIRouter()


@router.get("/health")
async def health(scheduler: AvailabilityScheduler = Depends(get_scheduler)):
    return {
        "status": "healthy",
        "service": "quiz-engine",
        "scheduler_running": scheduler.running,
    }

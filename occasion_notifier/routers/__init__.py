from fastapi import APIRouter

from .notification_runs import notification_runs_router
from .shared import health_router

main_router = APIRouter()
main_router.include_router(health_router, prefix="/health", tags=["Health Checks"])
main_router.include_router(
    notification_runs_router, prefix="/notification-runs", tags=["Notification Runs"]
)

__all__ = ["main_router"]

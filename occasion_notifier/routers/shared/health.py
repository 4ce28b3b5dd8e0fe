from typing import Annotated

from fastapi import APIRouter, Depends, Request

from occasion_notifier.config.settings import settings
from occasion_notifier.db.session import NotificationStore, get_store
from occasion_notifier.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("")
def health_check(
    request: Request, store: Annotated[NotificationStore, Depends(get_store)]
):
    """
    Basic health check endpoint

    Returns application status and whether the notification store answers
    """
    store_ok = store.ping()
    return ResponseBuilder.success(
        request=request,
        data={
            "status": "healthy" if store_ok else "degraded",
            "service": settings.NAME,
            "version": settings.VERSION,
            "mongoOk": store_ok,
        },
        message="Service is running",
    )

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from occasion_notifier.config.settings import settings
from occasion_notifier.db.session import NotificationStore
from occasion_notifier.utils.logging import get_logger
from occasion_notifier.routers import main_router
from occasion_notifier.utils.errors import setup_error_handlers
from occasion_notifier.middlewares import RequestIDMiddleware

# Initialize the logger
logger = get_logger()


@asynccontextmanager
async def lifespan(application: FastAPI):
    logger.info(f"{settings.NAME} is starting up...")
    store = getattr(application.state, "store", None)
    owns_store = store is None
    if owns_store:
        store = NotificationStore.from_settings().connect()
        application.state.store = store
    yield
    if owns_store:
        store.dispose()
    logger.info(f"{settings.NAME} is shutting down...")


def create_application(store: Optional[NotificationStore] = None) -> FastAPI:
    """Initialize the FastAPI application with settings and lifespan events."""
    application = FastAPI(
        title=settings.NAME, version=settings.VERSION, lifespan=lifespan
    )
    if store is not None:
        application.state.store = store

    # Setup error handlers
    setup_error_handlers(application)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "authorization"],
    )
    application.add_middleware(RequestIDMiddleware)

    application.include_router(main_router, prefix=settings.API_PREFIX, tags=["APIs"])

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "occasion_notifier.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_config=None,
        log_level=None,
    )

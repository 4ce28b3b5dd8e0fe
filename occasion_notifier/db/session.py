from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from occasion_notifier.config.settings import settings
from occasion_notifier.utils.errors import StoreUnavailableError
from occasion_notifier.utils.logging import get_logger

logger = get_logger()


def _connect_args(database_url: str, timeout_seconds: int) -> Dict[str, Any]:
    """
    Driver-specific connect and statement timeout arguments.

    SQLite runs in-process, so its only blocking wait is on file locks,
    bounded by ``timeout``.
    """
    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        return {"timeout": timeout_seconds, "check_same_thread": False}
    if backend == "postgresql":
        return {
            "connect_timeout": timeout_seconds,
            "options": f"-c statement_timeout={timeout_seconds * 1000}",
        }
    if backend in ("mysql", "mariadb"):
        return {
            "connect_timeout": timeout_seconds,
            "read_timeout": timeout_seconds,
            "write_timeout": timeout_seconds,
        }
    if backend == "mssql":
        return {"timeout": timeout_seconds}
    return {}


class NotificationStore:
    """
    Explicitly constructed handle on the persistent store.

    The caller owns the lifecycle: ``connect()`` builds the engine,
    ``ping()`` verifies the store answers within the configured timeout,
    ``session()`` hands out sessions and ``dispose()`` releases the pool.
    """

    def __init__(
        self,
        database_url: str,
        timeout_seconds: int = 15,
        engine: Optional[Engine] = None,
    ):
        self.database_url = database_url
        self.timeout_seconds = timeout_seconds
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = (
            sessionmaker(bind=engine, class_=Session, expire_on_commit=False)
            if engine is not None
            else None
        )

    @classmethod
    def from_settings(cls) -> "NotificationStore":
        return cls(settings.DATABASE_URL, settings.STORE_TIMEOUT_SECONDS)

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StoreUnavailableError("Store is not connected; call connect() first")
        return self._engine

    def connect(self) -> "NotificationStore":
        if self._engine is not None:
            return self

        url = make_url(self.database_url)
        options: Dict[str, Any] = {
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "connect_args": _connect_args(self.database_url, self.timeout_seconds),
            "echo": False,
        }
        if url.get_backend_name() == "sqlite":
            if url.database in (None, "", ":memory:"):
                options["poolclass"] = StaticPool
        else:
            options.update(pool_size=5, max_overflow=5, pool_timeout=self.timeout_seconds)

        self._engine = create_engine(self.database_url, **options)
        self._session_factory = sessionmaker(
            bind=self._engine, class_=Session, expire_on_commit=False
        )
        logger.info(
            "Store engine created",
            backend=url.get_backend_name(),
            timeout_seconds=self.timeout_seconds,
        )
        return self

    def ping(self) -> bool:
        """True when a trivial round trip to the store succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, StoreUnavailableError, OSError) as e:
            logger.error("Store connectivity check failed", error=str(e))
            return False

    @contextmanager
    def session(self) -> Iterator[Session]:
        if self._session_factory is None:
            raise StoreUnavailableError("Store is not connected; call connect() first")
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None


def get_store(request: Request) -> NotificationStore:
    """FastAPI dependency: the store created by the application lifespan."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise StoreUnavailableError()
    return store


def get_sync_session(request: Request) -> Iterator[Session]:
    """FastAPI dependency yielding a session bound to the application store."""
    with get_store(request).session() as db:
        yield db

from typing import Generator

import pytest
from sqlalchemy.orm import Session

from occasion_notifier.db.db import create_tables
from occasion_notifier.db.session import NotificationStore

from tests.factories import FakePushGateway, RecordingLogger


# Test database setup
@pytest.fixture
def store() -> Generator[NotificationStore, None, None]:
    """Fresh in-memory store per test."""
    test_store = NotificationStore("sqlite:///:memory:", timeout_seconds=15).connect()
    create_tables(test_store)
    yield test_store
    test_store.dispose()


@pytest.fixture
def db_session(store: NotificationStore) -> Generator[Session, None, None]:
    with store.session() as session:
        yield session


@pytest.fixture
def run_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def gateway() -> FakePushGateway:
    return FakePushGateway()


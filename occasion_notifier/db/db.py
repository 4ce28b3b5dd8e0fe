from .models import Base
from .session import NotificationStore

from occasion_notifier.utils.logging import get_logger

logger = get_logger()


def create_tables(store: NotificationStore):
    Base.metadata.create_all(store.engine)
    logger.info("Created all tables.")


def drop_tables(store: NotificationStore):
    Base.metadata.drop_all(store.engine)
    logger.info("Dropped all tables.")


def reset_db(store: NotificationStore):
    logger.info("Resetting database...")
    drop_tables(store)
    create_tables(store)
    logger.info("Database reset complete.")


if __name__ == "__main__":
    import sys

    store = NotificationStore.from_settings().connect()
    try:
        if "--reset" in sys.argv:
            reset_db(store)
        else:
            create_tables(store)
    finally:
        store.dispose()

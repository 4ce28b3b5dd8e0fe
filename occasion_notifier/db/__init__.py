from .session import NotificationStore, get_store, get_sync_session

__all__ = ["NotificationStore", "get_store", "get_sync_session"]

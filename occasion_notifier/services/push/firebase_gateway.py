import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

import firebase_admin
from firebase_admin import credentials, exceptions as firebase_exceptions, messaging

from occasion_notifier.config.settings import settings
from occasion_notifier.utils.errors import PushDeliveryError, PushGatewayError
from occasion_notifier.utils.logging import get_logger

logger = get_logger()

TOKEN_NOT_REGISTERED = "token-not-registered"
INVALID_TOKEN = "invalid-token"


def stringify_data(data: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """FCM data payloads only accept string values."""
    return {str(k): "" if v is None else str(v) for k, v in (data or {}).items()}


def classify_firebase_error(error: Exception, token_send: bool) -> str:
    """Map an SDK exception to the gateway error codes the dispatcher acts on."""
    if isinstance(error, messaging.UnregisteredError):
        return TOKEN_NOT_REGISTERED
    if isinstance(error, messaging.SenderIdMismatchError):
        return INVALID_TOKEN
    if token_send and isinstance(error, firebase_exceptions.InvalidArgumentError):
        if "registration token" in str(error).lower():
            return INVALID_TOKEN
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code.lower().replace("_", "-")
    return "unknown"


class PushGateway(ABC):
    """Delivery surface the dispatcher depends on."""

    @property
    def ready(self) -> bool:
        return True

    @abstractmethod
    async def send_to_topic(
        self, topic: str, title: str, body: str, data: Optional[Mapping[str, Any]] = None
    ) -> str:
        """Broadcast to every device subscribed to ``topic``; returns the message id."""

    @abstractmethod
    async def send_to_token(
        self, token: str, title: str, body: str, data: Optional[Mapping[str, Any]] = None
    ) -> str:
        """
        Send to one device.

        Raises:
            PushDeliveryError: the gateway rejected the message.
        """


class FirebasePushGateway(PushGateway):
    """Firebase Cloud Messaging through an explicitly initialised firebase_admin app."""

    def __init__(
        self,
        credentials_path: str = "",
        app_name: str = "occasion-notifier",
        timeout_seconds: int = 15,
    ):
        self.credentials_path = credentials_path
        self.app_name = app_name
        self.timeout_seconds = timeout_seconds
        self._app: Optional[firebase_admin.App] = None

    @classmethod
    def from_settings(cls) -> "FirebasePushGateway":
        return cls(
            credentials_path=settings.FIREBASE_CREDENTIALS_PATH,
            app_name=settings.FIREBASE_APP_NAME,
            timeout_seconds=settings.PUSH_TIMEOUT_SECONDS,
        )

    @property
    def ready(self) -> bool:
        return self._app is not None

    def connect(self) -> "FirebasePushGateway":
        if self._app is not None:
            return self
        try:
            # Apps are process-wide in firebase_admin; reuse one left by an earlier run
            self._app = firebase_admin.get_app(self.app_name)
            return self
        except ValueError:
            pass

        try:
            cred = (
                credentials.Certificate(self.credentials_path)
                if self.credentials_path
                else credentials.ApplicationDefault()
            )
            self._app = firebase_admin.initialize_app(
                cred, {"httpTimeout": self.timeout_seconds}, name=self.app_name
            )
        except Exception as e:
            raise PushGatewayError(f"Firebase initialisation failed: {e}") from e

        logger.info(
            "Firebase app initialised",
            app_name=self.app_name,
            project_id=self._app.project_id,
        )
        return self

    def _message(
        self,
        title: str,
        body: str,
        data: Optional[Mapping[str, Any]],
        topic: Optional[str] = None,
        token: Optional[str] = None,
    ) -> messaging.Message:
        return messaging.Message(
            topic=topic,
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data=stringify_data(data),
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    channel_id="default", sound="default"
                ),
            ),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(aps=messaging.Aps(sound="default"))
            ),
        )

    async def _send(self, message: messaging.Message, token_send: bool) -> str:
        if self._app is None:
            raise PushGatewayError("Push gateway is not connected; call connect() first")
        try:
            return await asyncio.to_thread(messaging.send, message, False, self._app)
        except Exception as e:
            raise PushDeliveryError(classify_firebase_error(e, token_send), str(e)) from e

    async def send_to_topic(
        self, topic: str, title: str, body: str, data: Optional[Mapping[str, Any]] = None
    ) -> str:
        return await self._send(self._message(title, body, data, topic=topic), token_send=False)

    async def send_to_token(
        self, token: str, title: str, body: str, data: Optional[Mapping[str, Any]] = None
    ) -> str:
        return await self._send(self._message(title, body, data, token=token), token_send=True)

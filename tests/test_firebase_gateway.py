import pytest
from unittest.mock import Mock, patch

from firebase_admin import exceptions as firebase_exceptions, messaging

from occasion_notifier.services.push.firebase_gateway import (
    FirebasePushGateway,
    classify_firebase_error,
    stringify_data,
)
from occasion_notifier.utils.errors import PushDeliveryError, PushGatewayError


class TestErrorClassification:
    """SDK exceptions map to the codes that drive token clearing."""

    def test_unregistered(self):
        error = messaging.UnregisteredError("Requested entity was not found.")
        assert classify_firebase_error(error, token_send=True) == "token-not-registered"

    def test_sender_mismatch(self):
        error = messaging.SenderIdMismatchError("Sender mismatch")
        assert classify_firebase_error(error, token_send=True) == "invalid-token"

    def test_invalid_registration_token(self):
        error = firebase_exceptions.InvalidArgumentError(
            "The registration token is not a valid FCM registration token"
        )
        assert classify_firebase_error(error, token_send=True) == "invalid-token"

    def test_invalid_argument_on_topic_is_not_a_token_problem(self):
        error = firebase_exceptions.InvalidArgumentError("Invalid topic name")
        assert classify_firebase_error(error, token_send=False) == "invalid-argument"

    def test_other_firebase_errors_use_their_code(self):
        error = firebase_exceptions.UnavailableError("Service unavailable")
        assert classify_firebase_error(error, token_send=True) == "unavailable"

    def test_non_firebase_error(self):
        assert classify_firebase_error(TimeoutError("read timed out"), token_send=True) == "unknown"


class TestFirebasePushGateway:
    def test_data_values_stringified(self):
        assert stringify_data({"count": 3, "event": "Ekadashi", "missing": None}) == {
            "count": "3",
            "event": "Ekadashi",
            "missing": "",
        }
        assert stringify_data(None) == {}

    def test_not_ready_until_connected(self):
        assert FirebasePushGateway().ready is False

    @pytest.mark.asyncio
    async def test_send_requires_connect(self):
        with pytest.raises(PushGatewayError):
            await FirebasePushGateway().send_to_topic("festivals", "t", "b")

    def test_connect_initialises_named_app(self):
        app = Mock(project_id="demo-project")
        with patch("firebase_admin.get_app", side_effect=ValueError("no app")), patch(
            "firebase_admin.initialize_app", return_value=app
        ) as initialize_app, patch(
            "occasion_notifier.services.push.firebase_gateway.credentials.Certificate"
        ) as certificate:
            gateway = FirebasePushGateway("service-account.json", "notifier-test", 12).connect()

        assert gateway.ready is True
        certificate.assert_called_once_with("service-account.json")
        initialize_app.assert_called_once_with(
            certificate.return_value, {"httpTimeout": 12}, name="notifier-test"
        )

    def test_connect_failure_wrapped(self):
        with patch("firebase_admin.get_app", side_effect=ValueError("no app")), patch(
            "occasion_notifier.services.push.firebase_gateway.credentials.ApplicationDefault",
            side_effect=RuntimeError("no default credentials"),
        ):
            gateway = FirebasePushGateway()
            with pytest.raises(PushGatewayError):
                gateway.connect()

        assert gateway.ready is False

    @pytest.mark.asyncio
    async def test_send_to_token_returns_message_id(self):
        gateway = FirebasePushGateway()
        gateway._app = Mock()

        with patch("firebase_admin.messaging.send", return_value="projects/p/messages/1") as send:
            message_id = await gateway.send_to_token("token-a", "Hare Krishna 🙏", "Happy Birthday!", {"type": "birthday"})

        assert message_id == "projects/p/messages/1"
        message = send.call_args.args[0]
        assert message.token == "token-a"
        assert message.notification.title == "Hare Krishna 🙏"
        assert message.data == {"type": "birthday"}

    @pytest.mark.asyncio
    async def test_send_failure_raises_delivery_error(self):
        gateway = FirebasePushGateway()
        gateway._app = Mock()

        with patch(
            "firebase_admin.messaging.send",
            side_effect=messaging.UnregisteredError("Requested entity was not found."),
        ):
            with pytest.raises(PushDeliveryError) as exc_info:
                await gateway.send_to_token("dead-token", "t", "b")

        assert exc_info.value.code == "token-not-registered"
        assert exc_info.value.is_permanent_token_failure is True

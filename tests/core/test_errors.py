"""
测试错误分类与支付结果
"""
from staydesk_core.errors import (
    AuthError,
    GatewayError,
    ServerError,
    StayDeskError,
    TransportError,
    ValidationError,
)
from staydesk_core.payment import PaymentResult


class TestErrors:
    def test_all_errors_share_base(self):
        for cls in (ValidationError, AuthError, GatewayError, ServerError):
            assert issubclass(cls, StayDeskError)
        assert isinstance(TransportError(TransportError.NETWORK), StayDeskError)

    def test_default_messages(self):
        assert ValidationError().user_message == "Please fill in all required fields"
        assert AuthError().user_message == "Session expired. Please log in again."

    def test_transport_timeout_message(self):
        err = TransportError(TransportError.TIMEOUT)
        assert err.is_timeout
        assert err.user_message == "Request timed out. Please try again."

    def test_transport_network_message(self):
        err = TransportError(TransportError.NETWORK)
        assert not err.is_timeout
        assert err.user_message == "Network error. Please check your connection."

    def test_gateway_error_keeps_code(self):
        err = GatewayError("Your card was declined.", code="card_declined")
        assert err.code == "card_declined"
        assert str(err) == "Your card was declined."

    def test_server_error_to_dict(self):
        err = ServerError("Room not available", status_code=400, context={"booking_id": "b1"})
        assert err.status_code == 400
        assert err.to_dict() == {
            "error_type": "ServerError",
            "message": "Room not available",
            "context": {"booking_id": "b1"},
        }


class TestPaymentResult:
    def test_only_literal_succeeded_counts(self):
        assert PaymentResult("succeeded", "pi_1").succeeded
        assert not PaymentResult("processing", "pi_1").succeeded
        assert not PaymentResult("requires_action").succeeded

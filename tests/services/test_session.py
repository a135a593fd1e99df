"""
测试 GuestSession - 组件装配、打开与登出
"""
import pytest
from jose import jwt
from unittest.mock import MagicMock

from staydesk_core.errors import AuthError
from staydesk_core.payment import IPaymentGateway
from staydesk.models.schemas import ApiResult, BookingListResponse, PayOnlineResponse
from staydesk.services import events
from staydesk.services.booking_orchestrator import PaymentPhase
from staydesk.services.notification_channel import ChannelState
from staydesk.services.session import GuestSession, user_id_from_token

from conftest import make_booking

TOKEN = jwt.encode({"id": "u1"}, "secret", algorithm="HS256")


@pytest.fixture
def socket_factory():
    return MagicMock()


@pytest.fixture
def session(api, scheduler, event_bus, socket_factory):
    s = GuestSession(
        TOKEN,
        api=api,
        gateway=MagicMock(spec=IPaymentGateway),
        scheduler=scheduler,
        event_bus=event_bus,
        socket_client_factory=socket_factory,
    )
    yield s
    s.sign_out()


class TestToken:
    def test_user_id_from_claims(self):
        assert user_id_from_token(TOKEN) == "u1"

    def test_malformed_token(self):
        with pytest.raises(AuthError):
            user_id_from_token("not-a-jwt")

    def test_token_without_id(self):
        with pytest.raises(AuthError):
            user_id_from_token(jwt.encode({"role": "guest"}, "secret", algorithm="HS256"))

    def test_empty_token_rejected(self):
        with pytest.raises(AuthError):
            GuestSession("")

    def test_explicit_user_id_wins(self, api, scheduler):
        s = GuestSession("opaque-token", user_id="u9", api=api, scheduler=scheduler)
        assert s.user_id == "u9"


class TestOpen:
    def test_open_fetches_and_connects(self, session, api, scheduler, socket_factory):
        session.open()

        assert scheduler.running
        api.list_bookings.assert_called_once()
        api.list_notifications.assert_called_once()
        socket_factory.assert_called_once()
        assert session.channel.state == ChannelState.CONNECTING
        assert session.is_open

    def test_open_without_channel(self, session, socket_factory):
        session.open(with_channel=False)
        socket_factory.assert_not_called()

    def test_wires_auth_handler_into_client(self, session, api):
        assert api.on_auth_error == session._on_auth_error


class TestSignOut:
    def test_sign_out_releases_everything(self, session, api, scheduler, recorded):
        session.open()
        session.sign_out()

        assert not session.is_open
        assert not scheduler.running
        api.close.assert_called_once()
        assert session.channel.state == ChannelState.DISCONNECTED
        assert recorded(events.SESSION_SIGNED_OUT) == [{"user_id": "u1", "reason": "user"}]

    def test_sign_out_is_idempotent(self, session, recorded):
        session.sign_out()
        session.sign_out()
        assert len(recorded(events.SESSION_SIGNED_OUT)) == 1

    def test_sign_out_compensates_pending_payment(self, session, api):
        """登出时不留下等待确认的支付"""
        api.list_bookings.return_value = BookingListResponse(success=True, bookings=[make_booking("b1")])
        api.pay_online.return_value = PayOnlineResponse(success=True, client_secret="pi_1_secret_x")
        api.revert_to_pay_later.return_value = ApiResult(success=True)
        session.open(with_channel=False)
        session.orchestrator.pay_online("b1")
        assert session.orchestrator.phase("b1") == PaymentPhase.AWAITING_CONFIRMATION

        session.sign_out()

        api.revert_to_pay_later.assert_called_once_with("b1")
        assert session.orchestrator.session("b1") is None

    def test_auth_error_forces_sign_out(self, session, api, recorded):
        session.open(with_channel=False)

        def expired(booking_id, reason):
            error = AuthError()
            api.on_auth_error(error)
            raise error

        api.list_bookings.return_value = BookingListResponse(success=True, bookings=[make_booking("b1")])
        session.bookings.refresh()
        api.cancel_booking.side_effect = expired

        with pytest.raises(AuthError):
            session.bookings.cancel("b1")

        assert not session.is_open
        assert session.bookings.bookings == []
        assert recorded(events.SESSION_SIGNED_OUT)[0]["reason"] == "auth_error"
        assert {"level": "error", "message": "Session expired. Please log in again."} in recorded(events.UI_NOTICE)

    def test_context_manager(self, api, scheduler):
        with GuestSession(TOKEN, api=api, scheduler=scheduler, socket_client_factory=MagicMock()) as s:
            assert s.is_open
        assert not s.is_open

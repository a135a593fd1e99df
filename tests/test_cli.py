"""
测试 typer CLI - 会话整体 mock
"""
import pytest
from decimal import Decimal
from unittest.mock import MagicMock, patch

from typer.testing import CliRunner

from staydesk_core.errors import AuthError, GatewayError
from staydesk.cli import app
from staydesk.models.schemas import PaymentOption
from staydesk.services.booking_orchestrator import BookingOutcome

from conftest import make_booking, make_notification

runner = CliRunner()


@pytest.fixture
def session():
    with patch("staydesk.cli.GuestSession") as cls:
        s = cls.return_value
        s.bookings.filter_by_category.return_value = [make_booking("b1")]
        s.notifications.notifications = [make_notification("n1"), make_notification("n2", read=True)]
        s.notifications.unread_count = 1
        yield s


class TestBook:
    def test_pay_later(self, session):
        session.orchestrator.create_booking.return_value = BookingOutcome(
            booking_id="b1", payment_option=PaymentOption.PAY_LATER,
            total_amount=Decimal("400.00"), discount_applied=0,
        )
        result = runner.invoke(app, [
            "book", "h1", "--check-in", "2024-06-20", "--check-out", "2024-06-22",
            "--room-type", "Deluxe", "--price", "100", "--rooms", "2", "--token", "tok",
        ])

        assert result.exit_code == 0, result.output
        assert "Booked" in result.output
        request = session.orchestrator.create_booking.call_args.args[0]
        assert request.nights == 2
        assert request.payment_option == PaymentOption.PAY_LATER
        session.sign_out.assert_called_once()

    def test_pay_online_with_card(self, session):
        session.orchestrator.create_booking.return_value = BookingOutcome(
            booking_id="b1", payment_option=PaymentOption.PAY_ONLINE,
            total_amount=Decimal("360.00"), discount_applied=10, session=MagicMock(),
        )
        result = runner.invoke(app, [
            "book", "h1", "--check-in", "2024-06-20", "--check-out", "2024-06-22",
            "--room-type", "Deluxe", "--price", "100", "--pay-online",
            "--payment-method", "pm_card_visa", "--token", "tok",
        ])

        assert result.exit_code == 0, result.output
        session.orchestrator.confirm_payment.assert_called_once_with("b1", "pm_card_visa")
        assert "10% online discount" in result.output


class TestCommands:
    def test_bookings_table(self, session):
        result = runner.invoke(app, ["bookings", "--token", "tok"])
        assert result.exit_code == 0, result.output
        assert "b1" in result.output

    def test_token_from_env(self, session):
        result = runner.invoke(app, ["bookings"], env={"STAYDESK_TOKEN": "tok"})
        assert result.exit_code == 0, result.output

    def test_cancel(self, session):
        result = runner.invoke(app, ["cancel", "b1", "--reason", "plans changed", "--token", "tok"])
        assert result.exit_code == 0, result.output
        session.bookings.cancel.assert_called_once_with("b1", "plans changed")

    def test_pay_failure_exits_nonzero(self, session):
        session.orchestrator.confirm_payment.side_effect = GatewayError("Your card was declined.")
        result = runner.invoke(app, ["pay", "b1", "--payment-method", "pm_x", "--token", "tok"])
        assert result.exit_code == 1
        assert "declined" in result.output
        session.sign_out.assert_called_once()

    def test_notifications(self, session):
        result = runner.invoke(app, ["notifications", "--unread-only", "--token", "tok"])
        assert result.exit_code == 0, result.output
        assert "n1" in result.output
        assert "n2" not in result.output

    def test_mark_read_all(self, session):
        result = runner.invoke(app, ["mark-read", "--all", "--token", "tok"])
        assert result.exit_code == 0, result.output
        session.notifications.mark_all_as_read.assert_called_once()

    def test_mark_read_needs_target(self, session):
        result = runner.invoke(app, ["mark-read", "--token", "tok"])
        assert result.exit_code == 1

    def test_open_failure(self, session):
        session.open.side_effect = AuthError()
        result = runner.invoke(app, ["bookings", "--token", "tok"])
        assert result.exit_code == 1
        assert "Session expired" in result.output

    def test_watch_for_a_moment(self, session):
        result = runner.invoke(app, ["watch", "--seconds", "0", "--token", "tok"])
        assert result.exit_code == 0, result.output
        session.open.assert_called_once_with(with_channel=True)

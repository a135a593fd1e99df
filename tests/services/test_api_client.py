"""
测试 BookingAPIClient - 用 httpx.MockTransport 替代真实服务端
"""
import json

import httpx
import pytest
from unittest.mock import MagicMock

from staydesk_core.errors import AuthError, ServerError, TransportError
from staydesk.models.schemas import PaymentStatus
from staydesk.services.api_client import BookingAPIClient


def make_client(handler, on_auth_error=None):
    return BookingAPIClient(
        "http://hotel.test/",
        "tok-123",
        on_auth_error=on_auth_error,
        transport=httpx.MockTransport(handler),
    )


class TestRequests:
    def test_bearer_credential_on_every_request(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["token"] = request.headers["token"]
            return httpx.Response(200, json={"success": True, "bookings": []})

        make_client(handler).list_bookings()
        assert seen == {"auth": "Bearer tok-123", "token": "tok-123"}

    def test_create_booking(self):
        def handler(request):
            assert request.method == "POST"
            assert request.url.path == "/api/booking/book"
            assert json.loads(request.content)["hotelId"] == "h1"
            return httpx.Response(201, json={
                "success": True,
                "bookingId": "b1",
                "clientSecret": "pi_1_secret_x",
                "message": "Booking created",
            })

        resp = make_client(handler).create_booking({"hotelId": "h1"})
        assert resp.booking_id == "b1"
        assert resp.client_secret == "pi_1_secret_x"

    def test_list_bookings_with_status_filter(self):
        def handler(request):
            assert request.url.path == "/api/booking/my-bookings"
            assert request.url.params["status"] == "Cancelled"
            return httpx.Response(200, json={"success": True, "bookings": [{
                "_id": "b1",
                "hotelId": {"_id": "h1", "name": "Lakeside Inn", "image": "x.jpg"},
                "checkInDate": "2024-06-20T00:00:00.000Z",
                "checkOutDate": "2024-06-22T00:00:00.000Z",
                "roomType": "Deluxe",
                "totalAmount": 400,
                "status": "Cancelled",
            }]})

        resp = make_client(handler).list_bookings(status="Cancelled")
        booking = resp.bookings[0]
        assert booking.hotel_id == "h1"
        assert booking.hotel_name == "Lakeside Inn"
        assert booking.check_in_date.isoformat() == "2024-06-20"
        assert booking.is_cancelled

    def test_cancel_sends_reason(self):
        def handler(request):
            assert request.method == "DELETE"
            assert request.url.path == "/api/booking/bookings/b1"
            assert json.loads(request.content) == {"cancellationReason": "plans changed"}
            return httpx.Response(200, json={"success": True, "message": "Booking cancelled successfully"})

        resp = make_client(handler).cancel_booking("b1", "plans changed")
        assert resp.booking is None
        assert resp.message == "Booking cancelled successfully"

    def test_check_payment_status(self):
        def handler(request):
            assert request.url.path == "/api/booking/check-payment-status/b1"
            return httpx.Response(200, json={"success": True, "paymentStatus": "Completed"})

        assert make_client(handler).check_payment_status("b1").payment_status == PaymentStatus.COMPLETED

    def test_pay_online_and_revert_paths(self):
        paths = []

        def handler(request):
            paths.append((request.method, request.url.path))
            return httpx.Response(200, json={"success": True, "clientSecret": "pi_1_secret_x"})

        client = make_client(handler)
        client.pay_online("b1")
        client.revert_to_pay_later("b1")
        assert paths == [
            ("POST", "/api/booking/bookings/b1/pay-online"),
            ("POST", "/api/booking/bookings/b1/revert-to-pay-later"),
        ]

    def test_notification_endpoints(self):
        paths = []

        def handler(request):
            paths.append((request.method, request.url.path))
            if request.url.path == "/api/notifications":
                assert request.url.params["limit"] == "20"
                return httpx.Response(200, json={
                    "success": True, "unreadCount": 1, "total": 1,
                    "notifications": [{"_id": "n1", "type": "PAYMENT", "title": "Paid", "read": False}],
                })
            return httpx.Response(200, json={"success": True})

        client = make_client(handler)
        listing = client.list_notifications(limit=20)
        client.mark_notification_read("n1")
        client.mark_all_notifications_read()
        client.delete_notification("n1")
        client.delete_read_notifications()

        assert listing.unread_count == 1
        assert listing.notifications[0].id == "n1"
        assert paths[1:] == [
            ("POST", "/api/notifications/n1/read"),
            ("POST", "/api/notifications/mark-all-read"),
            ("DELETE", "/api/notifications/n1"),
            ("DELETE", "/api/notifications/read/all"),
        ]


class TestErrorMapping:
    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransportError) as exc_info:
            make_client(handler).list_bookings()
        assert exc_info.value.is_timeout

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportError) as exc_info:
            make_client(handler).list_bookings()
        assert not exc_info.value.is_timeout

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_status_codes(self, status):
        on_auth_error = MagicMock()

        def handler(request):
            return httpx.Response(status, json={"success": False, "message": "jwt expired"})

        with pytest.raises(AuthError):
            make_client(handler, on_auth_error=on_auth_error).list_bookings()
        on_auth_error.assert_called_once()

    def test_not_authorized_message(self):
        """服务端以 200 + "Not Authorized" 表示凭证失效"""
        def handler(request):
            return httpx.Response(200, json={"success": False, "message": "Not Authorized Login Again"})

        with pytest.raises(AuthError):
            make_client(handler).list_bookings()

    def test_server_error_carries_message(self):
        def handler(request):
            return httpx.Response(400, json={"success": False, "message": "Room not available"})

        with pytest.raises(ServerError) as exc_info:
            make_client(handler).create_booking({})
        assert exc_info.value.user_message == "Room not available"
        assert exc_info.value.status_code == 400

    def test_success_false_on_2xx(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "message": "Already paid"})

        with pytest.raises(ServerError, match="Already paid"):
            make_client(handler).pay_online("b1")

    def test_non_json_error_body(self):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        with pytest.raises(ServerError) as exc_info:
            make_client(handler).list_bookings()
        assert exc_info.value.status_code == 502

    def test_unexpected_body(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "bookings": [{"_id": "b1"}]})

        with pytest.raises(ServerError, match="Unexpected response"):
            make_client(handler).list_bookings()

"""
测试 NotificationStore - 推送幂等、乱序安全与未读数
"""
import pytest

from staydesk_core.errors import ServerError, TransportError
from staydesk.models.schemas import ApiResult, NotificationListResponse, NotificationType
from staydesk.services import events
from staydesk.services.notification_store import NotificationStore

from conftest import make_notification


@pytest.fixture
def store(api, event_bus):
    return NotificationStore(api, event_bus, page_size=20)


def payload(notification_id, read=False):
    return {"_id": notification_id, "type": "BOOKING", "title": "t", "message": "m", "read": read}


class TestChannelEvents:
    def test_new_notification_prepended(self, store):
        store.apply_new(payload("n1"))
        store.apply_new(payload("n2"))
        assert [n.id for n in store.notifications] == ["n2", "n1"]
        assert store.unread_count == 2

    def test_duplicate_new_is_noop(self, store):
        assert store.apply_new(payload("n1")) is True
        assert store.apply_new(payload("n1")) is False
        assert store.unread_count == 1
        assert len(store.notifications) == 1

    def test_read_decrements_once(self, store):
        store.apply_new(payload("n1"))
        store.apply_read("n1")
        store.apply_read("n1")
        assert store.unread_count == 0

    def test_read_before_new_inserts_as_read(self, store):
        """已读事件先于新通知到达"""
        store.apply_read("n1")
        store.apply_new(payload("n1"))
        assert store.get("n1").read
        assert store.unread_count == 0

    def test_deleted_before_new_drops_late_arrival(self, store):
        store.apply_deleted("n1")
        assert store.apply_new(payload("n1")) is False
        assert store.notifications == []

    def test_delete_unread_and_read(self, store):
        store.apply_new(payload("n1"))
        store.apply_new(payload("n2", read=True))
        store.apply_deleted("n1")
        store.apply_deleted("n2")
        store.apply_deleted("n2")
        assert store.unread_count == 0
        assert store.notifications == []

    def test_all_read(self, store):
        store.apply_new(payload("n1"))
        store.apply_new(payload("n2"))
        assert store.apply_all_read() is True
        assert store.unread_count == 0
        assert store.apply_all_read() is False

    def test_unread_never_negative_under_any_order(self, store):
        """重复、乱序的推送下未读数始终等于未读条目数且不为负"""
        sequence = [
            ("read", "n1"), ("deleted", "n2"), ("new", "n1"), ("new", "n2"), ("new", "n3"),
            ("read", "n3"), ("read", "n3"), ("new", "n3"), ("deleted", "n3"), ("all", None),
            ("new", "n4"), ("deleted", "n4"), ("deleted", "n4"), ("read", "n4"), ("new", "n5"),
        ]
        for kind, notification_id in sequence:
            if kind == "new":
                store.apply_new(payload(notification_id))
            elif kind == "read":
                store.apply_read(notification_id)
            elif kind == "deleted":
                store.apply_deleted(notification_id)
            else:
                store.apply_all_read()
            count = store.unread_count
            assert count >= 0
            assert count == sum(1 for n in store.notifications if not n.read)

        assert [n.id for n in store.notifications] == ["n5", "n1"]
        assert store.unread_count == 1

    def test_malformed_payload_dropped(self, store):
        assert store.apply_new({"title": "no id"}) is False

    def test_unknown_type_maps_to_other(self, store):
        store.apply_new({"_id": "n1", "type": "PROMO", "title": "t"})
        assert store.get("n1").type == NotificationType.OTHER

    def test_changes_published(self, store, recorded):
        store.apply_new(payload("n1"))
        store.apply_read("n1")
        assert recorded(events.NOTIFICATIONS_CHANGED) == [
            {"unread_count": 1, "total": 1},
            {"unread_count": 0, "total": 1},
        ]


class TestRest:
    def test_fetch_all_replaces_and_recomputes(self, store, api):
        store.apply_new(payload("stale"))
        api.list_notifications.return_value = NotificationListResponse(
            success=True,
            unread_count=5,
            notifications=[make_notification("n1"), make_notification("n2", read=True)],
        )

        store.fetch_all()

        api.list_notifications.assert_called_once_with(page=1, limit=20)
        assert [n.id for n in store.notifications] == ["n1", "n2"]
        assert store.unread_count == 1

    def test_mark_as_read_is_optimistic(self, store, api):
        store.apply_new(payload("n1"))
        api.mark_notification_read.return_value = ApiResult(success=True)

        store.mark_as_read("n1")

        assert store.unread_count == 0
        api.mark_notification_read.assert_called_once_with("n1")

    def test_mark_as_read_failure_keeps_local_state(self, store, api, recorded):
        """失败只提示，不回滚"""
        store.apply_new(payload("n1"))
        api.mark_notification_read.side_effect = TransportError(TransportError.NETWORK)

        store.mark_as_read("n1")

        assert store.get("n1").read
        assert recorded(events.UI_NOTICE) == [
            {"level": "error", "message": "Failed to mark notification as read"},
        ]

    def test_mark_all_as_read_failure(self, store, api, recorded):
        store.apply_new(payload("n1"))
        api.mark_all_notifications_read.side_effect = ServerError("boom")

        store.mark_all_as_read()

        assert store.unread_count == 0
        assert recorded(events.UI_NOTICE)[-1]["level"] == "error"

    def test_delete(self, store, api):
        store.apply_new(payload("n1"))
        api.delete_notification.return_value = ApiResult(success=True)
        assert store.delete("n1") is True
        assert store.get("n1") is None

    def test_delete_failure_keeps_item(self, store, api):
        store.apply_new(payload("n1"))
        api.delete_notification.side_effect = ServerError("Notification not found")
        with pytest.raises(ServerError):
            store.delete("n1")
        assert store.get("n1") is not None

    def test_delete_all_read(self, store, api):
        store.apply_new(payload("n1"))
        store.apply_new(payload("n2", read=True))
        api.delete_read_notifications.return_value = ApiResult(success=True)

        assert store.delete_all_read() == 1
        assert [n.id for n in store.notifications] == ["n1"]
        # 被删除的通知迟到的推送不会复活
        store.apply_new(payload("n2", read=True))
        assert [n.id for n in store.notifications] == ["n1"]

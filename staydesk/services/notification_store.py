"""
通知存储

通知集合与未读数的唯一持有者。两条输入：
- 实时通道推送（apply_*）：幂等、与到达顺序无关
- REST 操作（fetch_all / mark_* / delete*）

未读数始终由集合推导，因此永远等于集合中未读条目的数量，不会为负。
已读、已删除的 ID 保留在有界墓碑里，用于处理乱序到达的推送。
"""
import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as SchemaValidationError

from staydesk_core.engine import EventBus
from staydesk_core.errors import StayDeskError
from staydesk.config import settings
from staydesk.models.schemas import Notification
from staydesk.services.api_client import BookingAPIClient
from staydesk.services import events

logger = logging.getLogger(__name__)

TOMBSTONE_SIZE = 500


class _RecentIds:
    """有界的 ID 集合，超出容量时淘汰最早加入的"""

    def __init__(self, maxlen: int = TOMBSTONE_SIZE):
        self._ids: "OrderedDict[str, None]" = OrderedDict()
        self._maxlen = maxlen

    def add(self, item_id: str) -> None:
        self._ids[item_id] = None
        self._ids.move_to_end(item_id)
        while len(self._ids) > self._maxlen:
            self._ids.popitem(last=False)

    def discard(self, item_id: str) -> None:
        self._ids.pop(item_id, None)

    def clear(self) -> None:
        self._ids.clear()

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class NotificationStore:
    """
    通知存储

    Args:
        api: REST 客户端
        event_bus: 会话事件总线（变更时发布 notifications.changed）
        page_size: 全量拉取的条数
    """

    def __init__(self, api: BookingAPIClient, event_bus: EventBus, page_size: Optional[int] = None):
        self._api = api
        self._bus = event_bus
        self._page_size = page_size or settings.NOTIFICATION_PAGE_SIZE
        self._items: List[Notification] = []
        self._read_ids = _RecentIds()
        self._deleted_ids = _RecentIds()
        self._lock = threading.RLock()

    # ---------- 读取 ----------

    @property
    def notifications(self) -> List[Notification]:
        """最新在前的副本"""
        with self._lock:
            return list(self._items)

    @property
    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for n in self._items if not n.read)

    def get(self, notification_id: str) -> Optional[Notification]:
        with self._lock:
            return self._find(notification_id)

    # ---------- 通道推送 ----------

    def apply_new(self, payload: Union[Notification, Dict[str, Any]]) -> bool:
        """
        新通知：插到最前

        重复 ID 不做任何事；已删除过的 ID 丢弃；已读过的 ID 以已读状态插入。

        Returns:
            True 如果集合发生了变化
        """
        try:
            notification = payload if isinstance(payload, Notification) else Notification.model_validate(payload)
        except SchemaValidationError as e:
            logger.warning(f"Dropping malformed notification payload: {e.error_count()} errors")
            return False

        with self._lock:
            if notification.id in self._deleted_ids:
                logger.debug(f"Dropping late notification {notification.id}: already deleted")
                return False
            if self._find(notification.id) is not None:
                return False
            if notification.id in self._read_ids and not notification.read:
                notification = notification.model_copy(update={"read": True})
            self._items.insert(0, notification)
        self._changed()
        return True

    def apply_read(self, notification_id: str) -> bool:
        """标记已读；本地还没有该通知时记下来，等它到达"""
        with self._lock:
            self._read_ids.add(notification_id)
            if not self._set_read(notification_id):
                return False
        self._changed()
        return True

    def apply_all_read(self) -> bool:
        with self._lock:
            unread = [n.id for n in self._items if not n.read]
            for notification_id in unread:
                self._read_ids.add(notification_id)
            self._items = [n if n.read else n.model_copy(update={"read": True}) for n in self._items]
        if not unread:
            return False
        self._changed()
        return True

    def apply_deleted(self, notification_id: str) -> bool:
        with self._lock:
            self._deleted_ids.add(notification_id)
            before = len(self._items)
            self._items = [n for n in self._items if n.id != notification_id]
            removed = len(self._items) != before
        if removed:
            self._changed()
        return removed

    # ---------- REST ----------

    def fetch_all(self) -> List[Notification]:
        """整体替换本地集合（重连后的补偿同步也走这里）"""
        resp = self._api.list_notifications(page=1, limit=self._page_size)
        with self._lock:
            self._items = list(resp.notifications)
            for n in self._items:
                self._deleted_ids.discard(n.id)
            local_unread = sum(1 for n in self._items if not n.read)
        if resp.unread_count is not None and resp.unread_count != local_unread:
            logger.debug(
                f"Server unread count {resp.unread_count} differs from fetched page ({local_unread})"
            )
        logger.info(f"Fetched {len(resp.notifications)} notifications ({local_unread} unread)")
        self._changed()
        return self.notifications

    def mark_as_read(self, notification_id: str) -> bool:
        """乐观标记已读；服务端失败只记录并提示，不回滚"""
        changed = self.apply_read(notification_id)
        try:
            self._api.mark_notification_read(notification_id)
        except StayDeskError as e:
            logger.error(f"Failed to mark notification {notification_id} as read: {e}")
            events.publish_notice(self._bus, "error", "Failed to mark notification as read", source="notifications")
        return changed

    def mark_all_as_read(self) -> bool:
        changed = self.apply_all_read()
        try:
            self._api.mark_all_notifications_read()
        except StayDeskError as e:
            logger.error(f"Failed to mark all notifications as read: {e}")
            events.publish_notice(
                self._bus, "error", "Failed to mark all notifications as read", source="notifications",
            )
        return changed

    def delete(self, notification_id: str) -> bool:
        """服务端删除成功后再移除本地条目"""
        try:
            self._api.delete_notification(notification_id)
        except StayDeskError as e:
            logger.error(f"Failed to delete notification {notification_id}: {e}")
            events.publish_notice(self._bus, "error", "Failed to delete notification", source="notifications")
            raise
        return self.apply_deleted(notification_id)

    def delete_all_read(self) -> int:
        """删除全部已读通知，返回本地移除的条数"""
        try:
            self._api.delete_read_notifications()
        except StayDeskError as e:
            logger.error(f"Failed to delete read notifications: {e}")
            events.publish_notice(self._bus, "error", "Failed to delete read notifications", source="notifications")
            raise
        with self._lock:
            removed = [n.id for n in self._items if n.read]
            for notification_id in removed:
                self._deleted_ids.add(notification_id)
            self._items = [n for n in self._items if not n.read]
        if removed:
            self._changed()
        return len(removed)

    def clear(self) -> None:
        with self._lock:
            self._items = []
            self._read_ids.clear()
            self._deleted_ids.clear()

    # ---------- 内部 ----------

    def _find(self, notification_id: str) -> Optional[Notification]:
        for n in self._items:
            if n.id == notification_id:
                return n
        return None

    def _set_read(self, notification_id: str) -> bool:
        for i, n in enumerate(self._items):
            if n.id == notification_id:
                if n.read:
                    return False
                self._items[i] = n.model_copy(update={"read": True})
                return True
        return False

    def _changed(self) -> None:
        self._bus.emit(
            events.NOTIFICATIONS_CHANGED,
            {"unread_count": self.unread_count, "total": len(self._items)},
            source="notifications",
        )

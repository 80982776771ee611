"""Лента изменений строк хранилища.

Репозитории публикуют сюда каждую успешную запись вида
``{"operation": insert|update|delete, "table": ..., "row": {...}}``,
подписчики получают события своей области ``(table, column=value)``.
Гарантии те же, что у внешней ленты: доставка хотя бы один раз,
порядок сохраняется только в пределах подписки.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_CLOSED = object()


class ChangeFeedUnavailable(RuntimeError):
    """Лента изменений недоступна"""


class Subscription:
    """Подписка на изменения одной области"""

    def __init__(self, table: str, column: Optional[str] = None, value: Any = None):
        self.uuid = uuid.uuid4()
        self.table = table
        self.column = column
        self.value = value
        self.is_active = True
        self._queue: asyncio.Queue = asyncio.Queue()

    def matches(self, table: str, row: Dict[str, Any]) -> bool:
        if not self.is_active or table != self.table:
            return False
        if self.column is None:
            return True
        return str(row.get(self.column)) == str(self.value)

    def deliver(self, event: Dict[str, Any]) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self.is_active:
            self.is_active = False
            self._queue.put_nowait(_CLOSED)

    def drain(self) -> List[Dict[str, Any]]:
        """Забрать все накопленные события без ожидания"""
        events = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is _CLOSED:
                continue
            events.append(event)
        return events

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        event = await self._queue.get()
        if event is _CLOSED:
            raise StopAsyncIteration
        return event

    def __repr__(self) -> str:
        return f"Subscription(table={self.table}, {self.column}={self.value}, active={self.is_active})"


class InMemoryChangeFeed:
    """Процессная реализация ленты изменений"""

    def __init__(self):
        self._subscriptions: Dict[uuid.UUID, Subscription] = {}
        self.is_open = True

    def subscribe(self, table: str, column: Optional[str] = None, value: Any = None) -> Subscription:
        if not self.is_open:
            raise ChangeFeedUnavailable("Change feed is closed")

        subscription = Subscription(table, column, value)
        self._subscriptions[subscription.uuid] = subscription
        logger.debug(f"Subscribed {subscription}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        self._subscriptions.pop(subscription.uuid, None)
        logger.debug(f"Unsubscribed {subscription}")

    async def publish(self, operation: str, table: str, row: Dict[str, Any]) -> int:
        """Рассылка события всем подходящим подписчикам"""
        if not self.is_open:
            raise ChangeFeedUnavailable("Change feed is closed")

        event = {
            "operation": operation,
            "table": table,
            "row": dict(row),
            "commit_timestamp": datetime.utcnow().isoformat(),
        }

        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription.matches(table, row):
                subscription.deliver(event)
                delivered += 1
        return delivered

    def active_subscriptions(self, table: Optional[str] = None) -> List[Subscription]:
        return [
            subscription for subscription in self._subscriptions.values()
            if table is None or subscription.table == table
        ]

    def close(self) -> None:
        self.is_open = False
        for subscription in list(self._subscriptions.values()):
            subscription.close()
        self._subscriptions.clear()


change_feed = InMemoryChangeFeed()


def get_change_feed() -> InMemoryChangeFeed:
    return change_feed

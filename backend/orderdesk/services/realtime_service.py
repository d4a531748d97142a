# Overview: Realtime order change notifications; typed events fanned out per store.

"""
Order change events for fulfillment boards and customer screens.

Subscribers receive an OrderChangedEvent carrying the order id and new
status and fetch that single order (order_service.get_order) instead of
re-reading the whole active-order list.

Events are published AFTER the originating transaction commits. Publishing
never raises into the caller: a broken subscriber or an unreachable Redis
must not turn a committed order into a reported failure.
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from flask import current_app


ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
ORDER_REGISTER_ASSIGNED = "order.register_assigned"

EVENT_TYPES = (ORDER_CREATED, ORDER_STATUS_CHANGED, ORDER_REGISTER_ASSIGNED)


@dataclass
class OrderChangedEvent:
    type: str
    store_id: int
    order_id: int
    status: str
    order_number: str | None = None
    cash_register_id: int | None = None
    ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    v: int = 1

    def __post_init__(self) -> None:
        if self.type not in EVENT_TYPES:
            raise ValueError(f"Unknown order event type: {self.type}")
        if not isinstance(self.store_id, int) or self.store_id <= 0:
            raise ValueError("Event store_id must be a positive integer")
        if not isinstance(self.order_id, int) or self.order_id <= 0:
            raise ValueError("Event order_id must be a positive integer")

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, json_str: str) -> "OrderChangedEvent":
        return cls(**json.loads(json_str))

    @classmethod
    def for_order(cls, event_type: str, order: Any) -> "OrderChangedEvent":
        return cls(
            type=event_type,
            store_id=order.store_id,
            order_id=order.id,
            status=order.status,
            order_number=order.order_number,
            cash_register_id=order.cash_register_id,
        )


def channel_store_orders(store_id: int) -> str:
    """Redis channel carrying order events of one store."""
    return f"store:{store_id}:orders"


class RedisOrderPublisher:
    """Publishes order events to Redis pub/sub for out-of-process viewers."""

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisOrderPublisher":
        import redis

        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        return cls(client)

    def publish(self, event: OrderChangedEvent) -> int:
        return self.client.publish(channel_store_orders(event.store_id), event.to_json())


class OrderEventBus:
    """
    In-process subscription registry scoped by store_id.

    subscribe() returns a callable that removes the subscription; views call
    it on teardown.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: dict[int, list[Callable[[OrderChangedEvent], None]]] = {}
        self.publisher: RedisOrderPublisher | None = None

    def init_app(self, app) -> None:
        url = app.config.get("REDIS_URL")
        self.publisher = RedisOrderPublisher.from_url(url) if url else None
        app.extensions["order_events"] = self

    def subscribe(self, store_id: int, callback: Callable[[OrderChangedEvent], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(store_id, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(store_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(store_id, None)

        return unsubscribe

    def subscriber_count(self, store_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(store_id, []))

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()

    def publish(self, event: OrderChangedEvent) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(event.store_id, []))

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                current_app.logger.exception(
                    "Order event subscriber failed (store=%s order=%s)", event.store_id, event.order_id
                )

        if self.publisher is not None:
            try:
                self.publisher.publish(event)
            except Exception:
                current_app.logger.warning(
                    "Failed to publish order event to Redis (store=%s order=%s)",
                    event.store_id,
                    event.order_id,
                    exc_info=True,
                )


def publish_order_event(event_type: str, order) -> OrderChangedEvent:
    """Build and publish an event for a committed order."""
    from ..extensions import order_events

    event = OrderChangedEvent.for_order(event_type, order)
    order_events.publish(event)
    return event

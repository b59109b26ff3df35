import logging
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Subscription:
    """Caller-held handle for one registered callback. Calling it unsubscribes."""

    def __init__(self, registry: "SubscriberRegistry", callback: Callable):
        self._registry = registry
        self.callback = callback

    @property
    def active(self) -> bool:
        return self._registry.is_subscribed(self)

    def unsubscribe(self) -> None:
        self._registry.remove(self)

    def __call__(self) -> None:
        self.unsubscribe()

    def __repr__(self):
        return f"<Subscription(callback={self.callback!r}, active={self.active})>"


class SubscriberRegistry(Generic[T]):
    """
    Ordered, thread-safe observer list.

    Subscriptions are keyed by callback identity, so registering the same
    callable twice returns the existing handle. Delivery is synchronous, in
    subscription order, and never holds the registry lock while a callback
    runs. Publishing and the replay to a new subscriber share a delivery lock,
    so a subscriber never receives the replay after a newer value. A failing
    callback is logged and does not stop delivery to the rest.
    """

    def __init__(self, name: str):
        self.name = name
        self._subscriptions: dict[Callable, Subscription] = {}
        self._lock = threading.Lock()
        self._delivery_lock = threading.RLock()

    def add(self, callback: Callable[[T], None], replay: T | None = None) -> Subscription:
        with self._delivery_lock:
            with self._lock:
                existing = self._subscriptions.get(callback)
                if existing is not None:
                    return existing
                subscription = Subscription(self, callback)
                self._subscriptions[callback] = subscription

            if replay is not None:
                self._deliver(subscription, replay)
            return subscription

    def remove(self, subscription: Subscription) -> None:
        with self._lock:
            key = subscription.callback
            if self._subscriptions.get(key) is subscription:
                del self._subscriptions[key]

    def is_subscribed(self, subscription: Subscription) -> bool:
        with self._lock:
            return self._subscriptions.get(subscription.callback) is subscription

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()

    def publish(self, value: T) -> int:
        with self._delivery_lock:
            with self._lock:
                targets = list(self._subscriptions.values())

            delivered = 0
            for subscription in targets:
                if self._deliver(subscription, value):
                    delivered += 1
            return delivered

    def _deliver(self, subscription: Subscription, value: T) -> bool:
        try:
            subscription.callback(value)
            return True
        except Exception:
            logger.exception(f"[{self.name}] subscriber callback {subscription.callback!r} failed")
            return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

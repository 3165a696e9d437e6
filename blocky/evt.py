"""In-process publish/subscribe event bus and event topics."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable

# Blocking status changed. Args: enabled (bool).
BLOCKING_ENABLED_EVENT = "blocking:enabled"
# A list group changed. Args: list type, group name, element count.
BLOCKING_CACHE_GROUP_CHANGED = "blocking:cachingGroupChanged"
# A domain was prefetched. Args: domain name.
CACHING_DOMAIN_PREFETCHED = "caching:prefetched"
# Result cache size changed. Args: new size.
CACHING_RESULT_CACHE_CHANGED = "caching:resultCacheChanged"
# Query answered from the prefetch cache. Args: domain name.
CACHING_PREFETCH_CACHE_HIT = "caching:prefetchHit"
# Query answered from the result cache. Args: domain name.
CACHING_RESULT_CACHE_HIT = "caching:cacheHit"
# Query not found in the result cache. Args: domain name.
CACHING_RESULT_CACHE_MISS = "caching:cacheMiss"
# Number of domains being prefetched changed. Args: new count.
CACHING_DOMAINS_TO_PREFETCH_COUNT_CHANGED = "caching:domainsToPrefetchCountChanged"
# Application started. Args: version, build time.
APPLICATION_STARTED = "application:started"


@dataclass
class _Subscription:
    fn: Callable[..., Any]
    once: bool


class EventBus:
    """Synchronous, thread-safe topic based event bus."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[_Subscription]] = {}
        self._lock = threading.RLock()

    def _add(self, topic: str, fn: Callable[..., Any], once: bool) -> None:
        if not callable(fn):
            raise TypeError(f"handler for topic '{topic}' is not callable")
        with self._lock:
            self._handlers.setdefault(topic, []).append(_Subscription(fn, once))

    def subscribe(self, topic: str, fn: Callable[..., Any]) -> None:
        """Call ``fn`` on every publication of ``topic``."""
        self._add(topic, fn, once=False)

    def subscribe_once(self, topic: str, fn: Callable[..., Any]) -> None:
        """Call ``fn`` on the next publication of ``topic`` only."""
        self._add(topic, fn, once=True)

    def unsubscribe(self, topic: str, fn: Callable[..., Any]) -> None:
        """Remove ``fn`` from ``topic``; raises ``KeyError`` for an unknown topic."""
        with self._lock:
            subscriptions = self._handlers.get(topic)
            if not subscriptions:
                raise KeyError(f"topic {topic} doesn't exist")
            for subscription in subscriptions:
                if subscription.fn == fn:
                    subscriptions.remove(subscription)
                    break
            if not subscriptions:
                del self._handlers[topic]

    def publish(self, topic: str, *args: Any) -> None:
        """Call every handler of ``topic`` with ``args``, in subscription order."""
        with self._lock:
            subscriptions = list(self._handlers.get(topic, ()))
            remaining = [s for s in subscriptions if not s.once]
            if len(remaining) != len(subscriptions):
                if remaining:
                    self._handlers[topic] = remaining
                else:
                    self._handlers.pop(topic, None)
        for subscription in subscriptions:
            subscription.fn(*args)

    def has_callback(self, topic: str) -> bool:
        """Whether ``topic`` has any handler."""
        with self._lock:
            return bool(self._handlers.get(topic))


_bus = EventBus()


def bus() -> EventBus:
    """Return the global bus."""
    return _bus
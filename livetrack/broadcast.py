# livetrack/broadcast.py
"""
Live fan-out of accepted samples to connected viewers.

Every subscription owns a bounded asyncio queue living on the loop that
created it. ``publish`` never touches a socket: it schedules a put on each
subscriber's loop and returns, so a stalled viewer only fills its own queue.
A queue that overflows marks its subscription failed and removes it.
"""
import asyncio
import enum
import itertools
import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Optional

from .models import LocationSample

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256

_CLOSED = object()
_ids = itertools.count(1)


class SubscriptionState(str, enum.Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"    # graceful close, ours or the viewer's
    FAILED = "failed"      # overflow or send error
    DROPPED = "dropped"    # peer went away
    REMOVED = "removed"


TERMINAL_REASONS = (SubscriptionState.CLOSING, SubscriptionState.FAILED, SubscriptionState.DROPPED)


class SubscriptionClosed(Exception):
    """Raised by ``Subscription.get`` once the subscription has been removed."""


class Subscription:
    """Handle returned by ``SubscriptionManager.subscribe``."""

    def __init__(
        self,
        manager: "SubscriptionManager",
        loop: asyncio.AbstractEventLoop,
        maxsize: int,
        identity: Optional[str] = None,
    ) -> None:
        self.id = next(_ids)
        self.identity = identity
        self.state = SubscriptionState.CONNECTING
        self.reason: Optional[SubscriptionState] = None
        self.connected_at = datetime.now(timezone.utc)
        self._manager = manager
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} state={self.state.value} identity={self.identity!r}>"

    @property
    def closed(self) -> bool:
        return self.state is SubscriptionState.REMOVED

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def activate(self) -> None:
        if self.state is SubscriptionState.CONNECTING:
            self.state = SubscriptionState.ACTIVE

    def wants(self, sample: LocationSample) -> bool:
        return self.identity is None or sample.identity == self.identity

    def offer(self, sample: LocationSample) -> bool:
        """Schedule delivery without blocking. False if it can never arrive."""
        if self.closed:
            return False
        try:
            self._loop.call_soon_threadsafe(self._enqueue, sample)
        except RuntimeError:
            # loop already closed
            return False
        return True

    def _enqueue(self, sample: LocationSample) -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait(sample)
        except asyncio.QueueFull:
            logger.warning("subscription %s overflowed (%d pending), dropping", self.id, self._queue.qsize())
            self._manager.unsubscribe(self, SubscriptionState.FAILED)

    def _finish(self, reason: SubscriptionState) -> None:
        self.reason = reason
        self.state = SubscriptionState.REMOVED
        try:
            self._loop.call_soon_threadsafe(self._put_sentinel)
        except RuntimeError:
            pass

    def _put_sentinel(self) -> None:
        while self._queue.full():
            # only a failed or abandoned queue fills up; its backlog is useless
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> LocationSample:
        if self.closed and self._queue.empty():
            raise SubscriptionClosed(self.reason)
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise SubscriptionClosed(self.reason)
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> LocationSample:
        try:
            return await self.get()
        except SubscriptionClosed:
            raise StopAsyncIteration

    def close(self) -> None:
        self._manager.unsubscribe(self, SubscriptionState.CLOSING)


class SubscriptionManager:
    """The live subscriber set and the broadcaster over it."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        if queue_size <= 0:
            raise ValueError("subscriber queue size must be positive")
        self.queue_size = queue_size
        self._subscribers: dict[int, Subscription] = {}
        self._lock = Lock()
        # serializes fan-out so every subscriber sees one global order
        self._publish_lock = Lock()
        self._total_subscribed = 0
        self._total_published = 0
        self._total_failed = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, identity: Optional[str] = None) -> Subscription:
        """Register a subscription on the running loop."""
        loop = asyncio.get_running_loop()
        sub = Subscription(self, loop, self.queue_size, identity=identity or None)
        with self._lock:
            self._subscribers[sub.id] = sub
            self._total_subscribed += 1
        logger.info("subscription %s added (identity=%s)", sub.id, sub.identity or "*")
        return sub

    def unsubscribe(self, sub: Subscription, reason: SubscriptionState = SubscriptionState.CLOSING) -> bool:
        """Remove ``sub``. Safe to call repeatedly and from any path."""
        if reason not in TERMINAL_REASONS:
            raise ValueError(f"not a terminal reason: {reason}")
        with self._lock:
            if self._subscribers.pop(sub.id, None) is None:
                return False
            if reason is SubscriptionState.FAILED:
                self._total_failed += 1
        sub._finish(reason)
        logger.info("subscription %s removed (%s)", sub.id, reason.value)
        return True

    def publish(self, sample: LocationSample) -> int:
        """Hand ``sample`` to every live subscription. Returns how many took it."""
        with self._publish_lock:
            with self._lock:
                targets = list(self._subscribers.values())
                self._total_published += 1
            delivered = 0
            for sub in targets:
                if not sub.wants(sample):
                    continue
                if sub.offer(sample):
                    delivered += 1
                else:
                    self.unsubscribe(sub, SubscriptionState.FAILED)
        return delivered

    def close_all(self) -> int:
        with self._lock:
            subs = list(self._subscribers.values())
        return sum(self.unsubscribe(s, SubscriptionState.CLOSING) for s in subs)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "subscribers": len(self._subscribers),
                "total_subscribed": self._total_subscribed,
                "total_published": self._total_published,
                "total_failed": self._total_failed,
            }

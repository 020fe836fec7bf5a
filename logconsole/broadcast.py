"""
One-to-many delivery of live log events.

The Broadcaster owns the registry of subscribers. Registration is guarded by a
lock; delivery works on a snapshot of the registry so no subscriber's work
happens while the lock is held. Delivery is best-effort: a subscriber that
fails or cannot keep up is dropped, never waited for.
"""

import logging
import threading

from .events import LogEvent

logger = logging.getLogger(__name__)


class SlowSubscriber(Exception):
    """Raised by a subscriber whose mailbox is full."""


class Broadcaster:
    """
    Fans each published event out to every registered subscriber.

    A subscriber is any object with a non-blocking ``deliver(event)`` method.
    publish() must be called from the event loop that owns the subscribers.
    """

    def __init__(self):
        self._subscribers: list = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber):
        with self._lock:
            if subscriber not in self._subscribers:
                self._subscribers.append(subscriber)
            count = len(self._subscribers)
        logger.info(f"Subscriber added ({count} connected)")

    def unsubscribe(self, subscriber) -> bool:
        """Remove a subscriber. Returns False if it was not registered."""
        with self._lock:
            try:
                self._subscribers.remove(subscriber)
            except ValueError:
                return False
            count = len(self._subscribers)
        logger.info(f"Subscriber removed ({count} connected)")
        return True

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: LogEvent) -> int:
        """Deliver an event to all current subscribers. Returns the number reached."""
        with self._lock:
            targets = list(self._subscribers)

        delivered = 0
        for subscriber in targets:
            try:
                subscriber.deliver(event)
                delivered += 1
            except SlowSubscriber:
                logger.warning("Dropping subscriber that cannot keep up with the live feed")
                self.unsubscribe(subscriber)
            except Exception as e:
                logger.error(f"Dropping subscriber after delivery error: {e}")
                self.unsubscribe(subscriber)

        return delivered


# Global broadcaster instance
broadcaster = Broadcaster()

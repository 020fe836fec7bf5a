"""
Server-Sent Events delivery of the live log feed.

Each connected HTTP client gets a StreamSubscriber with a bounded mailbox. The
Broadcaster drops into the mailbox without waiting; the client's response
generator drains it. A client that falls a full mailbox behind is cut off.
"""

import asyncio
import json
import logging
from typing import AsyncIterator

from .broadcast import SlowSubscriber
from .events import LogEvent

logger = logging.getLogger(__name__)

EVENT_NAME = "log"


def format_sse(event: LogEvent) -> str:
    """Frame a log event as one Server-Sent Event."""
    return f"event: {EVENT_NAME}\ndata: {json.dumps(event.to_wire())}\n\n"


class StreamSubscriber:
    """A Broadcaster subscriber that buffers events for one SSE response."""

    def __init__(self, mailbox_size: int = 1000, keepalive: float = 15.0):
        self._mailbox: asyncio.Queue[LogEvent] = asyncio.Queue(maxsize=mailbox_size)
        self._keepalive = keepalive
        self.closed = False

    def deliver(self, event: LogEvent):
        if self.closed:
            raise SlowSubscriber("stream already closed")
        try:
            self._mailbox.put_nowait(event)
        except asyncio.QueueFull:
            self.closed = True
            raise SlowSubscriber(f"mailbox full ({self._mailbox.maxsize} events)")

    def close(self):
        self.closed = True

    async def frames(self) -> AsyncIterator[str]:
        """Yield SSE frames until closed, with a comment line while idle."""
        while not self.closed:
            try:
                event = await asyncio.wait_for(self._mailbox.get(), timeout=self._keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_sse(event)

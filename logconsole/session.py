"""
Per-viewer log state.

A ViewerSession holds what one connected viewer is looking at: the selected
process, the stdout/stderr filters, whether the view follows new output, and a
bounded buffer of events for the selected process only.
"""

from collections import deque
from typing import Iterator, Optional

from .events import LogEvent, StreamKind

BUFFER_CAPACITY = 2000


class RingBuffer:
    """Fixed-capacity FIFO of log events; the oldest entry is evicted first."""

    def __init__(self, capacity: int = BUFFER_CAPACITY):
        self._events: deque[LogEvent] = deque(maxlen=capacity)
        # Total pushes ever made. Keeps growing across evictions and clears,
        # so a cursor taken from it stays meaningful.
        self._seq = 0

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[LogEvent]:
        return iter(self._events)

    @property
    def capacity(self) -> int:
        return self._events.maxlen

    @property
    def seq(self) -> int:
        return self._seq

    def push(self, event: LogEvent):
        self._events.append(event)
        self._seq += 1

    def clear(self):
        self._events.clear()

    def since(self, cursor: int) -> list[LogEvent]:
        """Events pushed after `cursor`, limited to those still retained."""
        events = list(self._events)
        start = self._seq - len(events)
        cursor = max(start, min(cursor, self._seq))
        return events[cursor - start:]


class ViewerSession:
    """State for one connected viewer."""

    def __init__(self, capacity: int = BUFFER_CAPACITY):
        self.selected_process_id: Optional[int] = None
        self.show_out = True
        self.show_err = True
        self.auto_follow = True
        self.history_generation = 0
        self.buffer = RingBuffer(capacity)

    def select(self, process_id: int) -> int:
        """Switch to a process, invalidating any history still in flight.

        Returns the new history generation.
        """
        self.selected_process_id = process_id
        self.history_generation += 1
        self.clear()
        return self.history_generation

    def set_filter(self, show_out: bool, show_err: bool):
        self.show_out = show_out
        self.show_err = show_err

    def clear(self):
        self.buffer.clear()

    def append(self, event: LogEvent) -> bool:
        """Buffer an event if it belongs to the selected process."""
        if self.selected_process_id is None or event.process_id != self.selected_process_id:
            return False
        self.buffer.push(event)
        return True

    def deliver(self, event: LogEvent):
        """Broadcaster entry point for live events."""
        self.append(event)

    def _visible(self, event: LogEvent) -> bool:
        if event.stream is StreamKind.ERR:
            return self.show_err
        return self.show_out

    def render(self) -> list[LogEvent]:
        """Buffered events that pass the current filters, in buffer order."""
        return [event for event in self.buffer if self._visible(event)]

    def render_since(self, cursor: int) -> list[LogEvent]:
        """Like render(), limited to events pushed after `cursor`."""
        return [event for event in self.buffer.since(cursor) if self._visible(event)]

    def viewport_scrolled(self, at_bottom: bool):
        """Follow new output only while the viewport sits at the bottom."""
        self.auto_follow = at_bottom

    def toggle_auto_follow(self):
        self.auto_follow = not self.auto_follow

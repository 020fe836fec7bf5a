"""
Terminal log viewer.

Hosts one ViewerSession against a log console server: history comes from the
HTTP API through the ReconciliationController, live lines arrive over the SSE
stream and are fanned out locally through a Broadcaster. New lines are printed
incrementally while the session follows output.

Keys while watching:
    c        clear the view
    o / e    show or hide stdout / stderr
    f, space pause or resume following output
    n        switch to the next process
    q        quit
"""

import asyncio
import logging
import select
import sys
import termios
import tty
from typing import Optional

import httpx
from rich.console import Console
from rich.text import Text

from .broadcast import Broadcaster
from .client import ConsoleClient
from .config import config
from .events import LogEvent, ProcessDescriptor, StreamKind
from .reconcile import ReconciliationController
from .session import ViewerSession

logger = logging.getLogger(__name__)

STREAM_STYLES = {
    StreamKind.OUT: "bold green",
    StreamKind.ERR: "bold red",
}


def format_event(event: LogEvent) -> Text:
    """Render one log line as `[time] [OUT] payload`."""
    text = Text()
    text.append(f"[{event.observed_at.astimezone().strftime('%H:%M:%S')}] ", style="dim")
    text.append(f"[{event.stream.value.upper()}] ", style=STREAM_STYLES[event.stream])
    text.append(event.payload)
    return text


class KeyReader:
    """
    Non-blocking single keypresses from a terminal.

    Puts the terminal in cbreak mode for the duration of the `with` block.
    When the stream is not a TTY nothing is changed and read() always
    returns None.
    """

    def __init__(self, stream=None):
        self._stream = stream or sys.stdin
        self._saved = None

    def __enter__(self):
        try:
            self._saved = termios.tcgetattr(self._stream)
            tty.setcbreak(self._stream.fileno())
        except (termios.error, OSError, ValueError):
            self._saved = None  # Not a TTY, skip keyboard input
        return self

    def __exit__(self, *exc):
        if self._saved is not None:
            termios.tcsetattr(self._stream, termios.TCSADRAIN, self._saved)
            self._saved = None

    def read(self) -> Optional[str]:
        if self._saved is None:
            return None
        ready, _, _ = select.select([self._stream], [], [], 0)
        if not ready:
            return None
        return self._stream.read(1) or None


class ConsoleViewer:
    """Follows one process's logs on a terminal."""

    def __init__(
        self,
        client: ConsoleClient,
        console: Optional[Console] = None,
        history_lines: Optional[int] = None,
        capacity: Optional[int] = None,
        retry_delay: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ):
        self.client = client
        self.console = console or Console(highlight=False)
        self.session = ViewerSession(capacity or config.viewer_buffer_capacity)
        self.broadcaster = Broadcaster()
        self.broadcaster.subscribe(self.session)
        self.controller = ReconciliationController(
            self.session,
            client.history,
            history_lines or config.viewer_history_lines,
        )
        self.processes: list[ProcessDescriptor] = []
        self._retry_delay = config.viewer_retry_delay if retry_delay is None else retry_delay
        self._poll_interval = config.viewer_poll_interval if poll_interval is None else poll_interval
        self._cursor = 0

    def _notice(self, message: str):
        self.console.print(Text(f"-- {message} --", style="dim italic"))

    def _process_name(self, process_id: int) -> Optional[str]:
        for p in self.processes:
            if p.process_id == process_id:
                return p.name
        return None

    def select(self, process_id: int, process_name: Optional[str] = None) -> asyncio.Task:
        name = process_name or self._process_name(process_id)
        self._cursor = self.session.buffer.seq
        task = self.controller.select(process_id, name)
        self._notice(f"{name or process_id}: Loading historical logs...")
        return task

    def select_next(self) -> Optional[asyncio.Task]:
        """Move to the process after the selected one in the process list."""
        if not self.processes:
            return None
        ids = [p.process_id for p in self.processes]
        current = self.session.selected_process_id
        index = (ids.index(current) + 1) % len(ids) if current in ids else 0
        return self.select(ids[index])

    def handle_key(self, key: str) -> bool:
        """Apply a key binding. Returns False when the viewer should exit."""
        key = key if key == " " else key.lower()
        session = self.session

        if key == "q":
            return False
        if key == "c":
            session.clear()
            self._notice("Cleared")
        elif key == "o":
            session.set_filter(not session.show_out, session.show_err)
            self._notice(f"stdout {'shown' if session.show_out else 'hidden'}")
        elif key == "e":
            session.set_filter(session.show_out, not session.show_err)
            self._notice(f"stderr {'shown' if session.show_err else 'hidden'}")
        elif key in ("f", " "):
            session.toggle_auto_follow()
            self._notice("Following output" if session.auto_follow else "Paused, press f to resume")
        elif key == "n":
            self.select_next()
        return True

    def flush(self) -> int:
        """Print lines appended since the last flush. Returns how many were printed."""
        if not self.session.auto_follow:
            return 0
        events = self.session.render_since(self._cursor)
        self._cursor = self.session.buffer.seq
        for event in events:
            self.console.print(format_event(event))
        return len(events)

    async def refresh_processes(self) -> list[ProcessDescriptor]:
        """Reload the process list, selecting the first process if none is selected."""
        self.processes = await self.client.list_processes()
        if self.session.selected_process_id is None and self.processes:
            first = self.processes[0]
            self.select(first.process_id, first.name)
        return self.processes

    async def poll_processes(self):
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                await self.refresh_processes()
            except httpx.HTTPError as e:
                logger.warning(f"Failed to fetch processes: {e}")

    async def follow_live(self):
        """Pump the server's live stream into the local broadcaster, reconnecting on failure."""
        while True:
            try:
                async for event in self.client.live_events():
                    self.broadcaster.publish(event)
                logger.warning("Live stream ended, reconnecting")
            except httpx.HTTPError as e:
                logger.warning(f"Live stream error (retry in {self._retry_delay}s): {e}")
            await asyncio.sleep(self._retry_delay)

    async def run(
        self,
        process_id: Optional[int] = None,
        refresh: float = 0.2,
        keys: Optional[KeyReader] = None,
    ):
        """
        Watch a process until cancelled or `q` is pressed.

        Without a process id the first process the server reports is selected,
        as soon as there is one.
        """
        try:
            self.processes = await self.client.list_processes()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch processes: {e}")

        if process_id is None and self.processes:
            process_id = self.processes[0].process_id
        if process_id is None:
            self._notice("No PM2 processes found, waiting")
        else:
            self.select(process_id)

        tasks = [
            asyncio.create_task(self.follow_live()),
            asyncio.create_task(self.poll_processes()),
        ]
        try:
            while True:
                key = keys.read() if keys else None
                if key and not self.handle_key(key):
                    break
                self.flush()
                await asyncio.sleep(refresh)
        finally:
            for task in tasks:
                task.cancel()
            await self.controller.aclose()
            for task in tasks:
                try:
                    await task
                except asyncio.CancelledError:
                    pass

"""
Merging historical and live output into one viewer session.

On every selection the controller clears the session, fetches the tail of the
process's stdout and stderr logs, and appends them once they arrive, unless
the viewer has moved on in the meantime. Live events keep flowing into the
session through the Broadcaster the whole time.

History fetches are never cancelled on reselection. Each fetch remembers the
session's history generation at the time it was issued and its result is
dropped if the generation has moved on by the time it completes.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from .events import LogEvent, StreamKind, utcnow
from .session import ViewerSession

logger = logging.getLogger(__name__)

# history(process_id, stream, lines) -> lines, oldest first
HistorySource = Callable[[int, StreamKind, int], Awaitable[list[str]]]

HISTORY_PLACEHOLDER_NAME = "history"


class LoadState(Enum):
    IDLE = "idle"
    LOADING_HISTORY = "loading_history"
    LIVE = "live"


class ReconciliationController:
    """Drives a ViewerSession through IDLE -> LOADING_HISTORY -> LIVE."""

    def __init__(self, session: ViewerSession, history: HistorySource, history_lines: int = 50):
        self.session = session
        self.state = LoadState.IDLE
        self._history = history
        self._history_lines = history_lines
        self._tasks: set[asyncio.Task] = set()

    def select(self, process_id: int, process_name: Optional[str] = None) -> asyncio.Task:
        """Select a process and start loading its history. Must run on the event loop."""
        generation = self.session.select(process_id)
        self.state = LoadState.LOADING_HISTORY
        logger.debug(f"Loading history for process {process_id} (generation {generation})")

        task = asyncio.create_task(
            self._load_history(process_id, process_name or HISTORY_PLACEHOLDER_NAME, generation)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _is_current(self, generation: int) -> bool:
        return self.session.history_generation == generation

    async def _load_history(self, process_id: int, process_name: str, generation: int):
        try:
            out_lines, err_lines = await asyncio.gather(
                self._history(process_id, StreamKind.OUT, self._history_lines),
                self._history(process_id, StreamKind.ERR, self._history_lines),
            )
        except Exception as e:
            if not self._is_current(generation):
                return
            # Keep whatever the session already shows rather than blanking it
            logger.warning(f"Error fetching history for process {process_id}: {e}")
            self.state = LoadState.LIVE
            return

        if not self._is_current(generation):
            logger.debug(f"Discarding stale history for process {process_id} (generation {generation})")
            return

        loaded_at = utcnow()
        for stream, lines in ((StreamKind.OUT, out_lines), (StreamKind.ERR, err_lines)):
            for line in lines:
                self.session.append(
                    LogEvent(
                        stream=stream,
                        process_id=process_id,
                        process_name=process_name,
                        payload=line,
                        observed_at=loaded_at,
                    )
                )

        self.state = LoadState.LIVE
        logger.debug(
            f"History loaded for process {process_id}: {len(out_lines)} out, {len(err_lines)} err"
        )

    async def aclose(self):
        """Cancel history fetches still in flight."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

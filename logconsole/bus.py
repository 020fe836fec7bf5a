"""
Live log bus listener.

Subscribes to the supervisor's `log:out` and `log:err` channels, turns each raw
packet into a LogEvent and hands it to the Broadcaster on the event loop. The
bus calls back on its own thread; nothing here blocks that thread.
"""

import asyncio
import logging
from functools import partial

from .broadcast import Broadcaster
from .events import LogEvent, StreamKind, strip_line_ending

logger = logging.getLogger(__name__)

CHANNELS = {
    "log:out": StreamKind.OUT,
    "log:err": StreamKind.ERR,
}


def normalize_packet(stream: StreamKind, packet: dict) -> LogEvent:
    """Map a raw bus packet to a LogEvent. Raises KeyError/TypeError/ValueError if malformed."""
    process = packet["process"]
    return LogEvent(
        stream=stream,
        process_id=int(process["pm_id"]),
        process_name=str(process.get("name") or ""),
        payload=strip_line_ending(str(packet.get("data", ""))),
    )


class BusListener:
    """Feeds the supervisor's live log bus into a Broadcaster."""

    def __init__(self, broadcaster: Broadcaster):
        self._broadcaster = broadcaster
        self._loop: asyncio.AbstractEventLoop = None
        self._bus = None
        self.degraded = False

    @property
    def live(self) -> bool:
        return self._bus is not None and not self.degraded

    def start(self, supervisor, loop: asyncio.AbstractEventLoop) -> bool:
        """Subscribe to the supervisor's bus. Returns False when running without live logs."""
        self._loop = loop
        try:
            bus = supervisor.launch_bus()
            for channel, stream in CHANNELS.items():
                bus.on(channel, partial(self._on_packet, stream))
            bus.on("close", self._on_close)
            bus.start()
        except Exception as e:
            self._mark_degraded(f"Error launching log bus: {e}")
            return False

        self._bus = bus
        logger.info("Bus launched, listening for logs...")
        return True

    def stop(self):
        if self._bus is not None:
            self._bus.close()
            self._bus = None

    def _mark_degraded(self, reason: str):
        if self.degraded:
            return
        self.degraded = True
        logger.error(f"{reason}; serving history only")

    def _on_close(self, returncode=None):
        self._mark_degraded(f"Log bus closed unexpectedly (exit code {returncode})")

    def _on_packet(self, stream: StreamKind, packet: dict):
        try:
            event = normalize_packet(stream, packet)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed {stream.value} packet: {e}")
            return

        try:
            self._loop.call_soon_threadsafe(self._broadcaster.publish, event)
        except RuntimeError:
            # Event loop already closed during shutdown
            logger.debug("Dropping live event after event loop shutdown")

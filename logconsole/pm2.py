"""
PM2 process supervisor client.

Wraps the pm2 command line: `pm2 ping` to check the daemon, `pm2 jlist` to
enumerate processes, and `pm2 logs --json` as the live log bus. The bus is read
on a daemon thread and dispatched to handlers registered per channel
(`log:out`, `log:err`), using the same packet shape as PM2's own bus:
{"process": {"name": ..., "pm_id": ...}, "data": ...}.
"""

import asyncio
import json
import logging
import subprocess
import threading
from collections import defaultdict
from typing import Callable, Optional

from .config import config
from .events import ProcessDescriptor

logger = logging.getLogger(__name__)


class SupervisorUnavailable(Exception):
    """The PM2 daemon could not be reached."""


def descriptor_from_jlist(entry: dict) -> ProcessDescriptor:
    """Map one `pm2 jlist` entry to a ProcessDescriptor."""
    env = entry.get("pm2_env") or {}
    monit = entry.get("monit") or {}
    return ProcessDescriptor(
        process_id=int(entry["pm_id"]),
        name=entry.get("name", ""),
        status=env.get("status", "unknown"),
        out_log_path=env.get("pm_out_log_path"),
        err_log_path=env.get("pm_err_log_path"),
        memory=monit.get("memory", 0),
        cpu=monit.get("cpu", 0),
        uptime=env.get("pm_uptime"),
    )


class Pm2Bus:
    """Live log feed backed by a long-running `pm2 logs --json` process."""

    def __init__(self, pm2_bin: str):
        self._pm2_bin = pm2_bin
        self._handlers: dict[str, list[Callable]] = defaultdict(list)
        self._process: subprocess.Popen = None
        self._thread: threading.Thread = None
        self._closing = threading.Event()

    def on(self, channel: str, handler: Callable):
        """Register a handler for a channel: log:out, log:err or close."""
        self._handlers[channel].append(handler)

    def start(self):
        """Start reading the bus. Raises SupervisorUnavailable if pm2 cannot be run."""
        try:
            self._process = subprocess.Popen(
                [self._pm2_bin, "logs", "--json", "--lines", "0"],
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise SupervisorUnavailable(f"Could not start pm2 log bus: {e}") from e

        self._thread = threading.Thread(target=self._read_loop, daemon=True, name="pm2-bus")
        self._thread.start()
        logger.info(f"PM2 bus launched (pid {self._process.pid})")

    def close(self):
        self._closing.set()
        if self._process and self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()

    def _emit(self, channel: str, *args):
        for handler in self._handlers.get(channel, ()):
            try:
                handler(*args)
            except Exception as e:
                logger.error(f"Error in {channel} handler: {e}")

    def _dispatch_line(self, raw: bytes):
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Ignoring non-JSON bus output: {line[:200]}")
            return

        kind = entry.get("type") if isinstance(entry, dict) else None
        if kind not in ("out", "err"):
            return

        packet = {
            "process": {"name": entry.get("app_name"), "pm_id": entry.get("process_id")},
            "data": entry.get("message", ""),
        }
        self._emit(f"log:{kind}", packet)

    def _read_loop(self):
        try:
            for raw in iter(self._process.stdout.readline, b""):
                if self._closing.is_set():
                    break
                self._dispatch_line(raw)
        except Exception as e:
            logger.error(f"Error reading PM2 bus: {e}")
        finally:
            if not self._closing.is_set():
                self._emit("close", self._process.poll())


class Pm2Client:
    """Process registry and event bus for processes supervised by PM2."""

    def __init__(self, pm2_bin: Optional[str] = None, timeout: Optional[int] = None):
        self.pm2_bin = pm2_bin or config.pm2_bin
        self.timeout = timeout or config.pm2_timeout

    def _run(self, *args: str) -> str:
        try:
            result = subprocess.run(
                [self.pm2_bin, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise SupervisorUnavailable(f"pm2 executable not found: {self.pm2_bin}") from e
        except subprocess.TimeoutExpired as e:
            raise SupervisorUnavailable(f"pm2 {args[0]} timed out after {self.timeout}s") from e

        if result.returncode != 0:
            raise SupervisorUnavailable(
                f"pm2 {args[0]} failed ({result.returncode}): {result.stderr.strip()}"
            )
        return result.stdout

    async def connect(self):
        """Check that the PM2 daemon answers. Raises SupervisorUnavailable."""
        await asyncio.to_thread(self._run, "ping")
        logger.info("PM2 connected")

    async def list_processes(self) -> list[ProcessDescriptor]:
        output = await asyncio.to_thread(self._run, "jlist")
        try:
            entries = json.loads(output)
        except json.JSONDecodeError as e:
            raise SupervisorUnavailable(f"Unexpected pm2 jlist output: {e}") from e
        return [descriptor_from_jlist(entry) for entry in entries]

    async def describe(self, process_id: int) -> Optional[ProcessDescriptor]:
        for descriptor in await self.list_processes():
            if descriptor.process_id == process_id:
                return descriptor
        return None

    def launch_bus(self) -> Pm2Bus:
        """Create the live log bus. Register handlers, then call start()."""
        return Pm2Bus(self.pm2_bin)


# Global supervisor client instance
supervisor = Pm2Client()

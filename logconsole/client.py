"""
HTTP client for a running log console server.

Fetches the process list and log history over the JSON API and follows the
live Server-Sent Events stream.
"""

import json
import logging
from typing import AsyncIterator, Iterable, Iterator, Optional

import httpx

from .events import LogEvent, ProcessDescriptor, StreamKind

logger = logging.getLogger(__name__)


def parse_sse(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
    """
    Group Server-Sent Event lines into (event, data) pairs.

    Comment lines (keep-alives) are ignored; multi-line data fields are
    joined with newlines as the SSE format requires.
    """
    event_name = "message"
    data: list[str] = []
    for line in lines:
        if line == "":
            if data:
                yield event_name, "\n".join(data)
            event_name = "message"
            data = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_name = value
        elif field == "data":
            data.append(value)


class ConsoleClient:
    """Async client for the log console API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self):
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def list_processes(self) -> list[ProcessDescriptor]:
        response = await self._http.get("/api/processes")
        response.raise_for_status()
        return [
            ProcessDescriptor(
                process_id=int(p["pm_id"]),
                name=p["name"],
                status=p["status"],
                out_log_path=p.get("pm_out_log_path"),
                err_log_path=p.get("pm_err_log_path"),
                memory=p.get("memory") or 0,
                cpu=p.get("cpu") or 0.0,
                uptime=p.get("uptime"),
            )
            for p in response.json()
        ]

    async def history(self, process_id: int, stream: StreamKind, lines: int) -> list[str]:
        """Fetch the last lines of a process log. Blank lines inside the log are kept."""
        response = await self._http.get(
            f"/api/logs/{process_id}",
            params={"type": stream.value, "lines": lines},
        )
        response.raise_for_status()
        raw = response.json().get("logs") or ""
        return raw.split("\n") if raw else []

    async def live_events(self) -> AsyncIterator[LogEvent]:
        """Yield live log events until the server closes the stream."""
        async with self._http.stream("GET", "/api/stream", timeout=None) as response:
            response.raise_for_status()
            async for event_name, data in _aparse_sse(response.aiter_lines()):
                if event_name != "log":
                    continue
                try:
                    yield LogEvent.from_wire(json.loads(data))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed live event: {e}")


async def _aparse_sse(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, str]]:
    pending: list[str] = []
    async for line in lines:
        line = line.rstrip("\r\n")
        pending.append(line)
        if line == "":
            for item in parse_sse(pending):
                yield item
            pending = []

"""
Log console FastAPI application.

Provides the process list, historical log tails read straight from each
process's log files, and a Server-Sent Events stream that pushes every live
log line from the supervisor's bus to all connected clients.
"""

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from . import pm2
from .broadcast import broadcaster
from .bus import BusListener
from .config import config
from .events import StreamKind
from .stream import StreamSubscriber
from .tail import TailReadError, tail

# Configure logging with rotation
log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

# Rotating file handler (auto-compaction)
file_handler = RotatingFileHandler(
    config.server_log,
    maxBytes=config.log_max_bytes,
    backupCount=config.log_backup_count,
)
file_handler.setFormatter(log_formatter)

# Console handler
console_handler = logging.StreamHandler()
console_handler.setFormatter(log_formatter)

# Configure root logger
logging.basicConfig(
    level=logging.INFO,
    handlers=[file_handler, console_handler],
)
logger = logging.getLogger(__name__)

bus_listener = BusListener(broadcaster)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info("Starting log console...")

    # No half-initialized server: a missing supervisor aborts startup
    try:
        await pm2.supervisor.connect()
    except pm2.SupervisorUnavailable as e:
        logger.error(f"Error connecting to PM2: {e}")
        raise

    # A dead bus only costs live streaming; history keeps working
    bus_listener.start(pm2.supervisor, asyncio.get_running_loop())

    yield

    # Shutdown
    logger.info("Shutting down log console...")
    bus_listener.stop()


app = FastAPI(
    title="Log Console",
    description="Live and historical logs for PM2-supervised processes",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic models for API
class ProcessResponse(BaseModel):
    name: str
    pm_id: int
    status: str
    memory: int = 0
    cpu: float = 0.0
    uptime: Optional[int] = None
    pm_out_log_path: Optional[str] = None
    pm_err_log_path: Optional[str] = None


class LogsResponse(BaseModel):
    logs: str


class StatusResponse(BaseModel):
    supervisor: str
    bus: str
    subscribers: int


LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def parse_line_count(raw: Optional[str], default: int) -> int:
    """
    Line count from a query string, read from its leading digits ("5abc" is 5).

    Absent, non-numeric or non-positive values mean default.
    """
    match = LEADING_INT.match(raw or "")
    if not match:
        return default
    lines = int(match.group(1))
    return lines if lines > 0 else default


# Processes
@app.get("/api/processes", response_model=list[ProcessResponse])
async def list_processes():
    """List processes known to the supervisor."""
    try:
        processes = await pm2.supervisor.list_processes()
    except pm2.SupervisorUnavailable as e:
        logger.error(f"Error listing processes: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return [p.to_dict() for p in processes]


# Historical logs
@app.get("/api/logs/{pm_id}", response_model=LogsResponse)
async def get_process_logs(
    pm_id: int,
    type: str = Query("out", description="Log stream: out or err"),
    lines: Optional[str] = Query(None, description="Number of lines (default 100)"),
):
    """Get the last lines of a process's stdout or stderr log file."""
    try:
        process = await pm2.supervisor.describe(pm_id)
    except pm2.SupervisorUnavailable as e:
        logger.error(f"Error describing process {pm_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    if not process:
        raise HTTPException(status_code=404, detail="Process not found")

    stream = StreamKind.ERR if type == "err" else StreamKind.OUT
    count = parse_line_count(lines, config.history_default_lines)

    try:
        history = await asyncio.to_thread(
            tail, process.log_path(stream), count, config.history_max_bytes
        )
    except TailReadError as e:
        logger.error(str(e))
        raise HTTPException(status_code=500, detail=str(e))

    return {"logs": "\n".join(history)}


# Live stream
@app.get("/api/stream")
async def stream_logs():
    """
    Stream live log lines from every process.

    Returns Server-Sent Events (SSE) stream; each event is named `log`.
    """
    subscriber = StreamSubscriber(
        mailbox_size=config.stream_mailbox_size,
        keepalive=config.stream_keepalive,
    )
    broadcaster.subscribe(subscriber)

    async def event_stream():
        try:
            async for frame in subscriber.frames():
                yield frame
        finally:
            subscriber.close()
            broadcaster.unsubscribe(subscriber)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# Status overview
@app.get("/api/status", response_model=StatusResponse)
async def get_status():
    """Report whether the live bus is connected and how many streams are open."""
    return {
        "supervisor": "pm2",
        "bus": "live" if bus_listener.live else "degraded",
        "subscribers": broadcaster.subscriber_count,
    }


# Server logs
@app.get("/api/server/logs")
async def get_server_logs(lines: int = Query(100, ge=1, le=1000)):
    """Get recent log console log entries."""
    try:
        recent = await asyncio.to_thread(tail, str(config.server_log), lines, config.history_max_bytes)
    except TailReadError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"lines": recent, "total": len(recent)}

"""
Data model for the log console.

A LogEvent is one line of process output, either received live from the
supervisor's bus or synthesized from a historical log file. ProcessDescriptor
is the read-only view of a supervised process as reported by the supervisor.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class StreamKind(Enum):
    OUT = "out"
    ERR = "err"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LogEvent:
    """A single line of output from a supervised process."""

    stream: StreamKind
    process_id: int
    process_name: str
    payload: str
    observed_at: datetime = field(default_factory=utcnow)

    def to_wire(self) -> dict:
        """Serialize to the real-time channel payload."""
        return {
            "type": self.stream.value,
            "process_name": self.process_name,
            "pm_id": self.process_id,
            "data": self.payload,
            "timestamp": self.observed_at.isoformat(),
        }

    @classmethod
    def from_wire(cls, data: dict) -> "LogEvent":
        """Parse a real-time channel payload. Raises KeyError/ValueError on bad input."""
        timestamp = data["timestamp"]
        if timestamp.endswith("Z"):
            timestamp = timestamp[:-1] + "+00:00"
        return cls(
            stream=StreamKind(data["type"]),
            process_id=int(data["pm_id"]),
            process_name=str(data.get("process_name") or ""),
            payload=str(data["data"]),
            observed_at=datetime.fromisoformat(timestamp),
        )


def strip_line_ending(text: str) -> str:
    """Remove a single trailing newline (and carriage return) from a line."""
    if text.endswith("\n"):
        text = text[:-1]
    if text.endswith("\r"):
        text = text[:-1]
    return text


@dataclass(frozen=True)
class ProcessDescriptor:
    """A supervised process as described by the supervisor."""

    process_id: int
    name: str
    status: str
    out_log_path: Optional[str] = None
    err_log_path: Optional[str] = None
    memory: int = 0
    cpu: float = 0.0
    uptime: Optional[int] = None

    def log_path(self, stream: StreamKind) -> Optional[str]:
        return self.err_log_path if stream is StreamKind.ERR else self.out_log_path

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "pm_id": self.process_id,
            "status": self.status,
            "memory": self.memory,
            "cpu": self.cpu,
            "uptime": self.uptime,
            "pm_out_log_path": self.out_log_path,
            "pm_err_log_path": self.err_log_path,
        }

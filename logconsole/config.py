"""
Configuration for the log console service.

Loads settings from environment variables with sensible defaults.
The service's own log file is stored in ~/.logconsole/
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Log console configuration."""

    # Paths
    data_dir: Path = Path(os.environ.get("LOGCONSOLE_DATA_DIR", str(Path.home() / ".logconsole")))
    server_log: Path = None

    # Logging
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    # Server
    host: str = os.environ.get("LOGCONSOLE_HOST", "0.0.0.0")
    port: int = int(os.environ.get("LOGCONSOLE_PORT", "4000"))

    # PM2
    pm2_bin: str = os.environ.get("PM2_BIN", "pm2")
    pm2_timeout: int = int(os.environ.get("PM2_TIMEOUT", "10"))

    # History
    history_max_bytes: int = int(os.environ.get("HISTORY_MAX_BYTES", str(100 * 1024)))  # 100KB
    history_default_lines: int = int(os.environ.get("HISTORY_DEFAULT_LINES", "100"))

    # Real-time stream
    stream_mailbox_size: int = int(os.environ.get("STREAM_MAILBOX_SIZE", "1000"))
    stream_keepalive: float = float(os.environ.get("STREAM_KEEPALIVE", "15"))

    # Viewer client
    server_url: str = os.environ.get("LOGCONSOLE_URL", "http://localhost:4000")
    viewer_history_lines: int = int(os.environ.get("VIEWER_HISTORY_LINES", "50"))
    viewer_buffer_capacity: int = int(os.environ.get("VIEWER_BUFFER_CAPACITY", "2000"))
    viewer_retry_delay: float = float(os.environ.get("VIEWER_RETRY_DELAY", "5"))
    viewer_poll_interval: float = float(os.environ.get("VIEWER_POLL_INTERVAL", "5"))

    def __post_init__(self):
        """Initialize derived paths and create directories."""
        self.server_log = self.data_dir / "logconsole.log"

        self.data_dir.mkdir(parents=True, exist_ok=True)


config = Config()

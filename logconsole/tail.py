"""
Bounded tail reads of process log files.

Reads at most a fixed number of bytes from the end of a file, so the cost of
loading history does not grow with the size of the log.
"""

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 100 * 1024


class TailReadError(Exception):
    """Reading an existing log file failed part-way."""

    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"Failed to read {path}: {cause}")
        self.path = path
        self.cause = cause


def tail(path: Optional[str], max_lines: int, max_bytes: int = DEFAULT_MAX_BYTES) -> list[str]:
    """
    Return the last `max_lines` lines of the file at `path`, oldest first.

    Only the final `max_bytes` of the file are read. When that window starts
    past byte 0 its first line is most likely a fragment and is dropped, even
    if it happens to be complete.

    Missing, empty or unopenable files yield an empty list. An I/O error
    after the file has been opened raises TailReadError.
    """
    if max_lines <= 0 or not path or not os.path.isfile(path):
        return []

    try:
        f = open(path, "rb")
    except (FileNotFoundError, PermissionError) as e:
        logger.debug(f"Log file {path} is not readable: {e}")
        return []
    except OSError as e:
        raise TailReadError(path, e) from e

    with f:
        try:
            size = os.fstat(f.fileno()).st_size
            if size == 0:
                return []
            start = max(0, size - max_bytes)
            f.seek(start)
            data = f.read(size - start)
        except OSError as e:
            raise TailReadError(path, e) from e

    lines = data.split(b"\n")
    # A trailing newline terminates the last line; it does not start a new one
    if lines and lines[-1] == b"":
        lines.pop()
    if start > 0 and lines:
        lines = lines[1:]

    return [line.rstrip(b"\r").decode("utf-8", errors="replace") for line in lines[-max_lines:]]

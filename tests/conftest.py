"""
Shared pytest fixtures.

Key design decisions:
- LOGCONSOLE_DATA_DIR points at a tmp dir before the package is imported, so
  the server's own log file never lands in the real home directory.
- PM2 is replaced by FakeSupervisor; no pm2 daemon is needed.
- Async code is driven with asyncio.run() from plain tests.
"""
import os
import tempfile
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

os.environ.setdefault('LOGCONSOLE_DATA_DIR', tempfile.mkdtemp(prefix='logconsole_test_'))

from logconsole.events import LogEvent, ProcessDescriptor, StreamKind  # noqa: E402


class FakeBus:
    """In-memory stand-in for the PM2 log bus."""

    def __init__(self, fail_on_start=False):
        self.handlers = {}
        self.started = False
        self.closed = False
        self.fail_on_start = fail_on_start

    def on(self, channel, handler):
        self.handlers.setdefault(channel, []).append(handler)

    def start(self):
        if self.fail_on_start:
            raise RuntimeError('bus socket refused')
        self.started = True

    def close(self):
        self.closed = True

    def emit(self, channel, *args):
        for handler in self.handlers.get(channel, []):
            handler(*args)


class FakeSupervisor:
    """Process registry backed by a dict of descriptors."""

    def __init__(self, processes=(), bus=None, connect_error=None):
        self.processes = {p.process_id: p for p in processes}
        self.bus = bus or FakeBus()
        self.connect_error = connect_error
        self.connected = False

    async def connect(self):
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def list_processes(self):
        return list(self.processes.values())

    async def describe(self, process_id):
        return self.processes.get(process_id)

    def launch_bus(self):
        return self.bus


@pytest.fixture()
def make_event():
    """Factory for LogEvents with sensible defaults."""
    def _make(payload='line', process_id=1, stream=StreamKind.OUT, name='api'):
        return LogEvent(
            stream=stream,
            process_id=process_id,
            process_name=name,
            payload=payload,
            observed_at=datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc),
        )
    return _make


@pytest.fixture()
def log_dir(tmp_path):
    """Directory holding out/err log files for fake processes."""
    d = tmp_path / 'pm2-logs'
    d.mkdir()
    return d


@pytest.fixture()
def processes(log_dir):
    """Two fake processes; only `api` has log files on disk."""
    api_out = log_dir / 'api-out.log'
    api_err = log_dir / 'api-error.log'
    api_out.write_text('booting\nlistening on :8080\nGET /health 200\n')
    api_err.write_text('warning: cache cold\n')
    return [
        ProcessDescriptor(
            process_id=0, name='api', status='online',
            out_log_path=str(api_out), err_log_path=str(api_err),
            memory=52428800, cpu=1.5, uptime=1714564800000,
        ),
        ProcessDescriptor(
            process_id=1, name='worker', status='stopped',
            out_log_path=str(log_dir / 'worker-out.log'),
            err_log_path=str(log_dir / 'worker-error.log'),
        ),
    ]


@pytest.fixture()
def fake_supervisor(processes):
    return FakeSupervisor(processes)


@pytest.fixture()
def api_client(fake_supervisor):
    """TestClient with lifespan running against FakeSupervisor and a fresh broadcaster."""
    from fastapi.testclient import TestClient

    from logconsole import main
    from logconsole.broadcast import Broadcaster
    from logconsole.bus import BusListener

    broadcaster = Broadcaster()
    listener = BusListener(broadcaster)
    with patch('logconsole.pm2.supervisor', fake_supervisor), \
         patch.object(main, 'broadcaster', broadcaster), \
         patch.object(main, 'bus_listener', listener):
        with TestClient(main.app) as client:
            client.broadcaster = broadcaster
            client.bus_listener = listener
            yield client

"""Tests for the PM2 command-line client."""
import asyncio
import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from logconsole.events import StreamKind
from logconsole.pm2 import Pm2Bus, Pm2Client, SupervisorUnavailable, descriptor_from_jlist


JLIST = [
    {
        'pm_id': 0,
        'name': 'api',
        'monit': {'memory': 52428800, 'cpu': 1.5},
        'pm2_env': {
            'status': 'online',
            'pm_out_log_path': '/home/app/.pm2/logs/api-out.log',
            'pm_err_log_path': '/home/app/.pm2/logs/api-error.log',
            'pm_uptime': 1714564800000,
        },
    },
    {
        'pm_id': 3,
        'name': 'worker',
        'pm2_env': {'status': 'stopped'},
    },
]


def _completed(stdout='', returncode=0, stderr=''):
    return subprocess.CompletedProcess(args=['pm2'], returncode=returncode, stdout=stdout, stderr=stderr)


class TestDescriptorFromJlist:
    def test_full_entry(self):
        d = descriptor_from_jlist(JLIST[0])
        assert d.process_id == 0
        assert d.name == 'api'
        assert d.status == 'online'
        assert d.memory == 52428800
        assert d.cpu == 1.5
        assert d.uptime == 1714564800000
        assert d.log_path(StreamKind.OUT) == '/home/app/.pm2/logs/api-out.log'
        assert d.log_path(StreamKind.ERR) == '/home/app/.pm2/logs/api-error.log'

    def test_sparse_entry_uses_defaults(self):
        d = descriptor_from_jlist(JLIST[1])
        assert d.status == 'stopped'
        assert d.memory == 0
        assert d.cpu == 0
        assert d.out_log_path is None
        assert d.log_path(StreamKind.ERR) is None

    def test_to_dict_uses_wire_keys(self):
        data = descriptor_from_jlist(JLIST[0]).to_dict()
        assert data['pm_id'] == 0
        assert data['name'] == 'api'
        assert data['pm_out_log_path'].endswith('api-out.log')
        assert data['pm_err_log_path'].endswith('api-error.log')


class TestPm2Client:
    def test_connect_pings_daemon(self):
        client = Pm2Client(pm2_bin='pm2', timeout=3)
        with patch('logconsole.pm2.subprocess.run', return_value=_completed('pong')) as run:
            asyncio.run(client.connect())
        args, kwargs = run.call_args
        assert args[0] == ['pm2', 'ping']
        assert kwargs['timeout'] == 3

    def test_connect_failure_raises(self):
        client = Pm2Client(pm2_bin='pm2')
        with patch('logconsole.pm2.subprocess.run',
                   return_value=_completed(returncode=1, stderr='daemon not running')):
            with pytest.raises(SupervisorUnavailable, match='daemon not running'):
                asyncio.run(client.connect())

    def test_missing_executable_raises(self):
        client = Pm2Client(pm2_bin='/nonexistent/pm2')
        with patch('logconsole.pm2.subprocess.run', side_effect=FileNotFoundError()):
            with pytest.raises(SupervisorUnavailable, match='not found'):
                asyncio.run(client.connect())

    def test_timeout_raises(self):
        client = Pm2Client(pm2_bin='pm2', timeout=1)
        with patch('logconsole.pm2.subprocess.run',
                   side_effect=subprocess.TimeoutExpired(cmd='pm2', timeout=1)):
            with pytest.raises(SupervisorUnavailable, match='timed out'):
                asyncio.run(client.connect())

    def test_list_processes_parses_jlist(self):
        client = Pm2Client(pm2_bin='pm2')
        with patch('logconsole.pm2.subprocess.run', return_value=_completed(json.dumps(JLIST))) as run:
            processes = asyncio.run(client.list_processes())
        assert run.call_args[0][0] == ['pm2', 'jlist']
        assert [(p.process_id, p.name) for p in processes] == [(0, 'api'), (3, 'worker')]

    def test_list_processes_bad_output(self):
        client = Pm2Client(pm2_bin='pm2')
        with patch('logconsole.pm2.subprocess.run', return_value=_completed('not json')):
            with pytest.raises(SupervisorUnavailable, match='Unexpected'):
                asyncio.run(client.list_processes())

    def test_describe_known_and_unknown(self):
        client = Pm2Client(pm2_bin='pm2')
        with patch('logconsole.pm2.subprocess.run', return_value=_completed(json.dumps(JLIST))):
            found = asyncio.run(client.describe(3))
            missing = asyncio.run(client.describe(42))
        assert found.name == 'worker'
        assert missing is None

    def test_launch_bus_is_not_started(self):
        client = Pm2Client(pm2_bin='pm2')
        with patch('logconsole.pm2.subprocess.Popen') as popen:
            bus = client.launch_bus()
        assert isinstance(bus, Pm2Bus)
        popen.assert_not_called()


class TestPm2BusClose:
    def test_close_terminates_running_process(self):
        bus = Pm2Bus('pm2')
        process = MagicMock()
        process.poll.return_value = None
        bus._process = process
        bus.close()
        process.terminate.assert_called_once()
        process.wait.assert_called_once_with(timeout=5)

    def test_close_kills_when_terminate_hangs(self):
        bus = Pm2Bus('pm2')
        process = MagicMock()
        process.poll.return_value = None
        process.wait.side_effect = subprocess.TimeoutExpired(cmd='pm2', timeout=5)
        bus._process = process
        bus.close()
        process.kill.assert_called_once()

    def test_close_before_start_is_safe(self):
        Pm2Bus('pm2').close()

"""Tests for background process control."""

import os
import signal
import subprocess
import sys
import time
from unittest.mock import MagicMock, patch

import psutil
import pytest

from noisewatch.supervisor import (
    ControlFailure,
    ProcessRecord,
    Supervisor,
    monitor_command,
)
from tests.conftest import make_monitor_config


def test_record_round_trip(record):
    """A written pid reads back as the same integer."""
    record.write(4242)

    assert record.path.read_text() == "4242"
    assert record.read() == 4242


def test_record_write_creates_parent(tmp_path):
    """write() creates the data directory if needed."""
    record = ProcessRecord(tmp_path / "nested" / "dir" / "daemon.pid")
    record.write(1)
    assert record.path.exists()


def test_record_read_missing(record):
    """A missing record means no running instance."""
    with pytest.raises(ControlFailure, match="No running instance"):
        record.read()


def test_record_read_garbage(record):
    """A record that isn't a pid can't be read."""
    record.path.write_text("not-a-pid\n")
    with pytest.raises(ControlFailure, match="Cannot read process record"):
        record.read()


def test_record_read_tolerates_whitespace(record):
    """Trailing newlines from hand-written records are fine."""
    record.path.write_text(" 99\n")
    assert record.read() == 99


def test_record_remove(record):
    """remove() deletes the file and is a no-op when it's gone."""
    record.write(1)
    record.remove()
    assert not record.path.exists()
    record.remove()


def test_stop_without_record_sends_nothing(record):
    """stop() with no record reports ControlFailure and signals nobody."""
    supervisor = Supervisor(record)

    with patch("noisewatch.supervisor.os.kill") as mock_kill:
        with pytest.raises(ControlFailure):
            supervisor.stop()
        with pytest.raises(ControlFailure):
            supervisor.stop()

    mock_kill.assert_not_called()


def test_stop_sends_sigterm(record):
    """stop() signals the recorded pid and returns without waiting."""
    record.write(31337)
    supervisor = Supervisor(record)

    with patch("noisewatch.supervisor.os.kill") as mock_kill:
        assert supervisor.stop() == 31337

    mock_kill.assert_called_once_with(31337, signal.SIGTERM)
    # The monitor removes the record itself, not the caller
    assert record.path.exists()


def test_probe_sends_sigusr1(record):
    """probe() sends the liveness signal."""
    record.write(31337)

    with patch("noisewatch.supervisor.os.kill") as mock_kill:
        Supervisor(record).probe()

    mock_kill.assert_called_once_with(31337, signal.SIGUSR1)


def test_stop_dead_process(record):
    """Signalling a pid that no longer exists is a ControlFailure."""
    record.write(31337)

    with patch("noisewatch.supervisor.os.kill", side_effect=ProcessLookupError):
        with pytest.raises(ControlFailure, match="No process with PID 31337"):
            Supervisor(record).stop()


def test_stop_permission_denied(record):
    """Signalling another user's process is a ControlFailure."""
    record.write(1)

    with patch("noisewatch.supervisor.os.kill", side_effect=PermissionError):
        with pytest.raises(ControlFailure, match="Not permitted"):
            Supervisor(record).stop()


def test_status_no_record(record):
    """status() is None when nothing is recorded."""
    assert Supervisor(record).status() is None


def test_status_live_process(record):
    """status() reports a live recorded pid."""
    record.write(os.getpid())
    assert Supervisor(record).status() == os.getpid()


def test_status_stale_record_is_kept(record):
    """status() reports a dead pid as stopped but leaves the file alone."""
    record.write(31337)

    with patch("noisewatch.supervisor.psutil.Process", side_effect=psutil.NoSuchProcess(31337)):
        assert Supervisor(record).status() is None

    assert record.path.exists()


def test_status_access_denied_counts_as_running(record):
    """A process we may not inspect still exists."""
    record.write(1)
    proc = MagicMock()
    proc.status.side_effect = psutil.AccessDenied(1)

    with patch("noisewatch.supervisor.psutil.Process", return_value=proc):
        assert Supervisor(record).status() == 1


def test_start_spawns_detached_and_records_pid(record):
    """start() returns at once and the record holds the child's pid."""
    supervisor = Supervisor(record)
    command = [sys.executable, "-c", "import time; time.sleep(30)"]

    started = time.monotonic()
    pid = supervisor.start(command)
    try:
        assert time.monotonic() - started < 5
        assert record.read() == pid
        child = psutil.Process(pid)
        assert child.is_running()
        # Own session: not tied to our controlling terminal
        assert os.getsid(pid) == pid
    finally:
        os.kill(pid, signal.SIGKILL)
        psutil.Process(pid).wait(timeout=5)


def test_start_uses_new_session(record):
    """start() asks Popen for a new session with no terminal streams."""
    with patch("noisewatch.supervisor.subprocess.Popen") as mock_popen:
        mock_popen.return_value.pid = 777
        assert Supervisor(record).start(["noisewatch", "run"]) == 777

    kwargs = mock_popen.call_args.kwargs
    assert kwargs["start_new_session"] is True
    assert kwargs["stdin"] is subprocess.DEVNULL
    assert kwargs["stdout"] is subprocess.DEVNULL
    assert kwargs["stderr"] is subprocess.DEVNULL
    assert record.read() == 777


def test_monitor_command_round_trips_settings(tmp_path):
    """monitor_command re-runs the CLI with the same monitor settings."""
    mc = make_monitor_config(microphone="2", duration=5, threshold=0.35, verbose=True)
    argv = monitor_command(mc, tmp_path / "config.toml")

    assert argv[:3] == [sys.executable, "-m", "noisewatch.cli"]
    assert argv[3:5] == ["--config", str(tmp_path / "config.toml")]
    assert argv[5] == "run"
    options = argv[6:]
    assert options[options.index("--microphone") + 1] == "2"
    assert options[options.index("--sample") + 1] == "5"
    assert float(options[options.index("--threshold") + 1]) == 0.35
    assert options[options.index("--destination") + 1] == "u-test"
    assert "--verbose" in options


def test_monitor_command_without_config_path():
    """No --config is passed when the default config is in use."""
    argv = monitor_command(make_monitor_config())

    assert "--config" not in argv
    assert "--verbose" not in argv

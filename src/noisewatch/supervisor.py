"""Background process control: spawn, stop, probe.

The running monitor is identified only through the PID file. ``stop`` and
``probe`` signal whatever pid the file holds without checking that it still
belongs to a monitor.
"""

import os
import signal
import subprocess
import sys
from pathlib import Path

import psutil
import structlog

from noisewatch.config import MonitorConfig

log = structlog.get_logger()

STOP_SIGNAL = signal.SIGTERM
PROBE_SIGNAL = signal.SIGUSR1


class ControlFailure(Exception):
    """No usable process record, or the signal could not be delivered."""


class ProcessRecord:
    """PID file naming the running monitor process."""

    def __init__(self, path: Path):
        self.path = path

    def write(self, pid: int) -> None:
        """Write PID file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(pid))
        log.debug("pid_file_written", path=str(self.path), pid=pid)

    def read(self) -> int:
        """Return the recorded pid.

        Raises:
            ControlFailure: if the file is absent, unreadable or not a number
        """
        try:
            text = self.path.read_text()
        except FileNotFoundError:
            raise ControlFailure("No running instance found") from None
        except OSError as e:
            raise ControlFailure(f"Cannot read process record: {e}") from e

        try:
            return int(text.strip())
        except ValueError:
            raise ControlFailure(
                f"Cannot read process record: {text.strip()!r} is not a pid"
            ) from None

    def remove(self) -> None:
        """Remove PID file."""
        if self.path.exists():
            self.path.unlink()
            log.debug("pid_file_removed", path=str(self.path))


def monitor_command(config: MonitorConfig, config_path: Path | None = None) -> list[str]:
    """Build the argv that runs the monitor in the foreground with these settings."""
    argv = [sys.executable, "-m", "noisewatch.cli"]
    if config_path is not None:
        argv += ["--config", str(config_path)]
    argv += [
        "run",
        "--microphone",
        config.microphone,
        "--sample",
        str(config.duration),
        "--threshold",
        repr(config.threshold),
        "--destination",
        config.destination,
    ]
    if config.verbose:
        argv.append("--verbose")
    return argv


class Supervisor:
    """Starts the monitor as a detached process and signals it afterwards."""

    def __init__(self, record: ProcessRecord):
        self.record = record

    def start(self, command: list[str]) -> int:
        """Spawn ``command`` in its own session and record its pid.

        Returns immediately; the child outlives the caller.
        """
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,  # Detach from controlling terminal
            close_fds=True,
        )
        self.record.write(process.pid)
        log.info("monitor_spawned", pid=process.pid)
        return process.pid

    def stop(self) -> int:
        """Ask the recorded process to stop. Does not wait for it to exit.

        Raises:
            ControlFailure: no record, unreadable record, or delivery failed
        """
        log.info("stop_requested", path=str(self.record.path))
        return self._send(STOP_SIGNAL)

    def probe(self) -> int:
        """Ask the recorded process to log a liveness line."""
        return self._send(PROBE_SIGNAL)

    def status(self) -> int | None:
        """Return the recorded pid if that process is alive, else None.

        Read-only: a stale record is reported, never removed.
        """
        try:
            pid = self.record.read()
        except ControlFailure:
            return None

        try:
            proc = psutil.Process(pid)
            if proc.status() == psutil.STATUS_ZOMBIE:
                return None
        except psutil.NoSuchProcess:
            log.debug("pid_file_stale", pid=pid)
            return None
        except psutil.AccessDenied:
            # Can't inspect process - it exists, so report it
            pass
        return pid

    def _send(self, sig: signal.Signals) -> int:
        pid = self.record.read()
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            log.error("signal_failed", pid=pid, signal=sig.name, reason="no such process")
            raise ControlFailure(f"No process with PID {pid} (stale process record?)") from None
        except PermissionError:
            log.error("signal_failed", pid=pid, signal=sig.name, reason="permission denied")
            raise ControlFailure(f"Not permitted to signal PID {pid}") from None
        log.info("signal_sent", pid=pid, signal=sig.name)
        return pid

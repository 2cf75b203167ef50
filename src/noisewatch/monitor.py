"""The monitor loop: sample, compare, alert, cool down."""

import asyncio
import os
import signal
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog

from noisewatch import logging as console
from noisewatch.alerts import AlertDispatcher, DispatchFailure
from noisewatch.config import Config, MonitorConfig
from noisewatch.sampler import Sampler, SamplingFailure
from noisewatch.supervisor import PROBE_SIGNAL, STOP_SIGNAL, ProcessRecord

log = structlog.get_logger()


class MonitorState(Enum):
    """Lifecycle of a monitor. STOPPED is terminal."""

    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class MonitorStats:
    """Counters kept for the liveness probe and the shutdown log line."""

    sample_count: int = 0
    alert_count: int = 0
    failed_samples: int = 0
    failed_alerts: int = 0
    last_amplitude: float | None = None
    last_sample_time: datetime | None = None

    def update_sample(self, amplitude: float) -> None:
        """Update stats after a successful sample."""
        self.sample_count += 1
        self.last_amplitude = amplitude
        self.last_sample_time = datetime.now()


class Monitor:
    """Single-instance sampling loop driven by an immutable MonitorConfig.

    The state only moves forward: RUNNING -> STOPPING -> STOPPED. A stop
    request is observed at the top of the next iteration, so an in-flight
    sample and its cooldown always complete first.
    """

    # Seconds to wait after a failed iteration so a broken device can't spin the loop
    failure_pause: float = 1.0

    def __init__(
        self,
        config: MonitorConfig,
        record: ProcessRecord,
        dispatcher: AlertDispatcher,
        sampler: Sampler | None = None,
    ):
        self.config = config
        self.record = record
        self.dispatcher = dispatcher
        self.sampler = sampler or Sampler.for_monitor(config)
        self.stats = MonitorStats()
        self._state = MonitorState.RUNNING

    @property
    def state(self) -> MonitorState:
        return self._state

    def request_stop(self) -> None:
        """Stop signal handler. Only flips the state."""
        if self._state is MonitorState.RUNNING:
            self._state = MonitorState.STOPPING
            log.info("stop_signal_received")

    def probe(self) -> None:
        """Probe signal handler. Logs liveness, changes nothing."""
        if self._state is MonitorState.STOPPED:
            return
        log.info(
            "probe_received",
            msg="Listening",
            state=self._state.value,
            samples=self.stats.sample_count,
            alerts=self.stats.alert_count,
            last_amplitude=self.stats.last_amplitude,
        )

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route the stop and probe signals to this monitor.

        Handlers run as event loop callbacks, never in the middle of an
        iteration's subprocess or file handling.
        """
        loop = loop or asyncio.get_running_loop()
        loop.add_signal_handler(STOP_SIGNAL, self.request_stop)
        loop.add_signal_handler(PROBE_SIGNAL, self.probe)
        # Ctrl-C when running in the foreground
        loop.add_signal_handler(signal.SIGINT, self.request_stop)

    async def run_once(self) -> bool:
        """Run one sample/compare/alert cycle. Returns True if an alert was raised."""
        try:
            amplitude = await self.sampler.sample()
        except SamplingFailure as e:
            # Counts as a quiet cycle for threshold purposes
            self.stats.failed_samples += 1
            log.warning("sample_failed", error=str(e))
            await asyncio.sleep(self.failure_pause)
            return False

        self.stats.update_sample(amplitude)

        if amplitude > self.config.threshold:
            log.info("excessive_noise", amplitude=amplitude, threshold=self.config.threshold)
            console.excessive_noise(amplitude, self.config.threshold)
            await self._alert()
            # Hold so a single sustained noise doesn't produce an alert storm
            await asyncio.sleep(self.config.cooldown)
            return True

        log.debug("no_sound_detected", amplitude=amplitude, threshold=self.config.threshold)
        return False

    async def _alert(self) -> None:
        # Off the event loop so stop and probe signals are handled during the request
        try:
            request = await asyncio.to_thread(
                self.dispatcher.dispatch, self.config.message, self.config.destination
            )
        except DispatchFailure as e:
            self.stats.failed_alerts += 1
            log.error("alert_failed", error=str(e))
            return
        self.stats.alert_count += 1
        log.info("alert_dispatched", request=request)

    async def run(self) -> None:
        """Loop until a stop request is observed, then clean up."""
        cfg = self.config
        log.info(
            "monitor_started",
            pid=os.getpid(),
            microphone=cfg.microphone,
            duration=cfg.duration,
            threshold=cfg.threshold,
            cooldown=cfg.cooldown,
        )
        if cfg.verbose:
            log.debug(
                "monitor_config",
                format=cfg.format,
                record_path=cfg.record_path,
                destination=cfg.destination,
                pid_path=str(self.record.path),
            )

        try:
            while self._state is MonitorState.RUNNING:
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    log.info("monitor_cancelled")
                    break
                except Exception as e:
                    log.exception("iteration_failed", error=str(e))
                    await asyncio.sleep(self.failure_pause)
        finally:
            self._finish()

    def _finish(self) -> None:
        self.record.remove()
        self._state = MonitorState.STOPPED
        log.info(
            "monitor_stopped",
            at=datetime.now().strftime(console.BANNER_TIME_FORMAT),
            samples=self.stats.sample_count,
            alerts=self.stats.alert_count,
            failed_samples=self.stats.failed_samples,
            failed_alerts=self.stats.failed_alerts,
        )


async def run_monitor(config: Config, monitor_config: MonitorConfig) -> None:
    """Run a monitor in this process until it is told to stop.

    Args:
        config: Loaded config (paths, alert credentials, log rotation)
        monitor_config: Validated settings for this run
    """
    console.configure(config, verbose=monitor_config.verbose)

    record = ProcessRecord(config.pid_path)
    monitor = Monitor(monitor_config, record, AlertDispatcher.from_config(config.alerts))

    record.write(os.getpid())
    monitor.install_signal_handlers()

    try:
        await monitor.run()
    except Exception as e:
        log.exception("monitor_crashed", error=str(e))
        raise

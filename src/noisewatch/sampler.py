"""Audio sampling through arecord and SoX.

Each sample records a fixed-length clip to a shared temporary file, then asks
``sox stat`` for the clip's statistics and pulls out the peak amplitude.
"""

import asyncio
import re

import structlog

from noisewatch.config import Config, MonitorConfig, SamplingConfig, coerce_number

log = structlog.get_logger()

_MAX_AMPLITUDE_RE = re.compile(r"Maximum amplitude:\s+(\S+)")


class SamplingFailure(Exception):
    """Capture or analysis failed, or the report could not be parsed."""


def parse_peak_amplitude(report: str) -> float:
    """Extract the maximum amplitude from a ``sox stat`` report.

    Raises:
        SamplingFailure: if the field is missing or not a number
    """
    match = _MAX_AMPLITUDE_RE.search(report)
    if match is None:
        raise SamplingFailure("Maximum amplitude not found in analysis report")
    try:
        return float(match.group(1))
    except ValueError:
        raise SamplingFailure(f"Unparsable maximum amplitude: {match.group(1)!r}") from None


class Sampler:
    """Records one clip per call and returns its peak amplitude."""

    def __init__(
        self,
        microphone: str,
        duration: int,
        format: str = SamplingConfig.format,
        record_path: str = SamplingConfig.record_path,
        arecord_path: str = SamplingConfig.arecord_path,
        sox_path: str = SamplingConfig.sox_path,
    ):
        self.microphone = microphone
        self.duration = duration
        self.format = format
        self.record_path = record_path
        self.arecord_path = arecord_path
        self.sox_path = sox_path

    @classmethod
    def for_monitor(cls, config: MonitorConfig) -> "Sampler":
        return cls(
            microphone=config.microphone,
            duration=config.duration,
            format=config.format,
            record_path=config.record_path,
            arecord_path=config.arecord_path,
            sox_path=config.sox_path,
        )

    @classmethod
    def from_config(cls, config: Config, microphone: str, duration: int | None = None) -> "Sampler":
        """Sampler for a one-off test recording."""
        sampling = config.sampling
        return cls(
            microphone=microphone,
            duration=duration or coerce_number(int, "sampling.duration", sampling.duration),
            format=sampling.format,
            record_path=sampling.record_path,
            arecord_path=sampling.arecord_path,
            sox_path=sampling.sox_path,
        )

    @property
    def device(self) -> str:
        """ALSA device name for the configured card."""
        return f"plughw:{self.microphone},0"

    async def sample(self) -> float:
        """Record a clip and return its peak amplitude.

        Blocks for the full sample duration.

        Raises:
            SamplingFailure: on any capture, analysis or parse error
        """
        await self.record()
        report = await self.analyze()
        amplitude = parse_peak_amplitude(report)
        log.debug("sample_taken", amplitude=amplitude)
        return amplitude

    async def record(self) -> None:
        """Record ``duration`` seconds into the shared record file, overwriting it."""
        _, stderr, returncode = await self._run(
            self.arecord_path,
            "-D",
            self.device,
            "-d",
            str(self.duration),
            "-f",
            self.format,
            "-t",
            "wav",
            self.record_path,
        )
        if returncode != 0:
            raise SamplingFailure(
                f"arecord exited with status {returncode}: {stderr.strip() or 'no output'}"
            )

    async def analyze(self) -> str:
        """Run ``sox stat`` on the record file and return its report.

        SoX prints the statistics on stderr, so both streams are merged.
        """
        stdout, stderr, returncode = await self._run(
            self.sox_path, "-t", ".wav", self.record_path, "-n", "stat"
        )
        report = stdout + stderr
        if returncode != 0:
            raise SamplingFailure(
                f"sox exited with status {returncode}: {report.strip() or 'no output'}"
            )
        return report

    async def _run(self, *argv: str) -> tuple[str, str, int]:
        """Run a command to completion, returning decoded stdout, stderr and exit status."""
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SamplingFailure(f"Cannot run {argv[0]}: {e}") from e

        stdout, stderr = await process.communicate()
        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            process.returncode,
        )

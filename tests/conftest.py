"""Shared test fixtures for noisewatch."""

import stat
from pathlib import Path

import pytest

from noisewatch.config import Config, MonitorConfig, SamplingConfig
from noisewatch.supervisor import ProcessRecord

SOX_STAT_REPORT = """\
Samples read:            441000
Length (seconds):     10.000000
Scaled by:         2147483647.0
Maximum amplitude:     0.350006
Minimum amplitude:    -0.312347
Midline amplitude:     0.018829
Mean    norm:          0.041520
Mean    amplitude:    -0.000034
RMS     amplitude:     0.058219
Maximum delta:         0.190460
Minimum delta:         0.000000
Mean    delta:         0.012731
RMS     delta:         0.019604
Rough   frequency:         2370
Volume adjustment:        2.857
"""


def make_monitor_config(**overrides) -> MonitorConfig:
    """Create a MonitorConfig for testing with a zero cooldown unless overridden."""
    values = {
        "microphone": "1",
        "duration": 1,
        "threshold": 0.20,
        "destination": "u-test",
        "cooldown": 0.0,
    }
    values.update(overrides)
    return MonitorConfig(**values)


def write_script(path: Path, body: str) -> Path:
    """Write an executable shell script standing in for an external tool."""
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def record(tmp_path: Path) -> ProcessRecord:
    """ProcessRecord in a temporary directory."""
    return ProcessRecord(tmp_path / "daemon.pid")


@pytest.fixture
def fake_tools(tmp_path: Path) -> Config:
    """Config whose arecord/sox/cards paths point at fakes in tmp_path.

    The fake arecord copies its arguments into the record file; the fake sox
    prints a canned stat report on stderr like the real one.
    """
    cards = tmp_path / "cards"
    cards.write_text(" 1 [Device         ]: USB-Audio - USB PnP Sound Device\n")
    arecord = write_script(tmp_path / "arecord", 'for last; do :; done\necho "$@" > "$last"\n')
    report = tmp_path / "report.txt"
    report.write_text(SOX_STAT_REPORT)
    sox = write_script(tmp_path / "sox", f'cat "{report}" >&2\n')

    config = Config()
    config.sampling = SamplingConfig(
        duration=1,
        record_path=str(tmp_path / "noise.wav"),
        arecord_path=str(arecord),
        sox_path=str(sox),
        cards_path=str(cards),
    )
    return config

"""Startup checks for the external tools the monitor shells out to."""

from pathlib import Path

import structlog

from noisewatch.config import Config

log = structlog.get_logger()


class EnvironmentMissing(Exception):
    """A required external tool or interface is absent."""


def check_environment(config: Config) -> None:
    """Verify the capture tool, the analysis tool and the sound card listing exist.

    Raises:
        EnvironmentMissing: naming the first missing item
    """
    sampling = config.sampling
    required = [
        (sampling.arecord_path, "arecord", "Please install package alsa-utils"),
        (sampling.sox_path, "SoX", "Please install package sox"),
        (sampling.cards_path, "Sound card listing", "Is ALSA loaded?"),
    ]
    for path, name, hint in required:
        if not Path(path).exists():
            log.error("preflight_failed", missing=name, path=path)
            raise EnvironmentMissing(f"{name} not found at {path}. {hint}")
    log.debug("preflight_ok")


def list_sound_cards(config: Config) -> str:
    """Return the kernel's sound card listing."""
    path = Path(config.sampling.cards_path)
    try:
        return path.read_text()
    except OSError as e:
        raise EnvironmentMissing(f"Cannot read {path}: {e}") from e

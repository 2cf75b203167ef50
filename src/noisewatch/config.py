"""Configuration system for noisewatch."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit


@dataclass
class SamplingConfig:
    """Audio capture and analysis configuration."""

    duration: int = 10  # Seconds recorded per sample
    format: str = "S16_LE"  # arecord sample format of the USB sound card
    record_path: str = "/tmp/noise.wav"  # Overwritten every sample
    arecord_path: str = "/usr/bin/arecord"
    sox_path: str = "/usr/bin/sox"
    cards_path: str = "/proc/asound/cards"


@dataclass
class AlertsConfig:
    """Threshold and push notification configuration.

    The threshold is a peak amplitude on a 0-1 scale. 0.2 is roughly 30dB on
    the reference hardware.
    """

    threshold: float = 0.20
    cooldown: float = 10.0  # Seconds to hold after an alert before sampling again
    endpoint: str = "https://api.pushover.net/1/messages.json"
    token: str = ""  # Pushover application token
    user: str = ""  # Default destination (Pushover user key)
    message: str = "Excessive noise detected."
    timeout: float = 10.0  # Seconds before the notification request is abandoned


@dataclass
class SystemConfig:
    """Daemon housekeeping configuration."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


def coerce_number(kind: type, name: str, value):
    """Coerce a numeric setting, naming it when the value is unusable."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def _load_section(cls: type, data: dict):
    """Build a section dataclass from TOML data, using dataclass defaults for missing keys."""
    defaults = cls()
    return cls(**{f.name: data.get(f.name, getattr(defaults, f.name)) for f in fields(cls)})


@dataclass
class Config:
    """Main configuration container."""

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "noisewatch"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def data_dir(self) -> Path:
        """Data directory."""
        return Path.home() / ".local" / "share" / "noisewatch"

    @property
    def log_path(self) -> Path:
        """Daemon log path."""
        return self.data_dir / "daemon.log"

    @property
    def pid_path(self) -> Path:
        """PID file path."""
        return self.data_dir / "daemon.pid"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ["sampling", "alerts", "system"]:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values."""
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            sampling=_load_section(SamplingConfig, data.get("sampling", {})),
            alerts=_load_section(AlertsConfig, data.get("alerts", {})),
            system=_load_section(SystemConfig, data.get("system", {})),
        )


@dataclass(frozen=True)
class MonitorConfig:
    """Settings fixed for the lifetime of one monitor process.

    Built once at startup from the config file plus command-line overrides.
    Never reloaded.
    """

    microphone: str
    duration: int
    threshold: float
    destination: str
    verbose: bool = False
    format: str = SamplingConfig.format
    record_path: str = SamplingConfig.record_path
    arecord_path: str = SamplingConfig.arecord_path
    sox_path: str = SamplingConfig.sox_path
    cooldown: float = AlertsConfig.cooldown
    message: str = AlertsConfig.message

    def __post_init__(self) -> None:
        if not self.microphone:
            raise ValueError("microphone id is required")
        if self.duration <= 0:
            raise ValueError(f"sample duration must be positive, got {self.duration}")
        if not 0 < self.threshold <= 1:
            raise ValueError(f"threshold must be in (0, 1], got {self.threshold}")
        if not self.destination:
            raise ValueError("alert destination is required")
        if self.cooldown < 0:
            raise ValueError(f"cooldown must not be negative, got {self.cooldown}")

    @classmethod
    def from_config(
        cls,
        config: Config,
        microphone: str,
        duration: int | None = None,
        threshold: float | None = None,
        destination: str | None = None,
        verbose: bool = False,
    ) -> "MonitorConfig":
        """Merge command-line overrides over config file values.

        File values are coerced to their field types; a value that can't be
        raises ValueError like any other invalid setting.
        """
        sampling, alerts = config.sampling, config.alerts
        if duration is None:
            duration = coerce_number(int, "sampling.duration", sampling.duration)
        if threshold is None:
            threshold = coerce_number(float, "alerts.threshold", alerts.threshold)
        return cls(
            microphone=str(microphone).strip(),
            duration=duration,
            threshold=threshold,
            destination=str(destination or alerts.user or ""),
            verbose=verbose,
            format=str(sampling.format),
            record_path=str(sampling.record_path),
            arecord_path=str(sampling.arecord_path),
            sox_path=str(sampling.sox_path),
            cooldown=coerce_number(float, "alerts.cooldown", alerts.cooldown),
            message=str(alerts.message),
        )

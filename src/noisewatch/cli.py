"""CLI commands for noisewatch."""

from pathlib import Path

import click

from noisewatch import logging as console


def _monitor_options(f):
    """Options shared by ``start`` and ``run``."""
    f = click.option("-v", "--verbose/--no-verbose", default=False, help="Run verbosely")(f)
    f = click.option("-e", "--destination", help="Alert destination (Pushover user key)")(f)
    f = click.option(
        "-n", "--threshold", type=float, help="Activation noise threshold, e.g. 0.1"
    )(f)
    f = click.option("-s", "--sample", "duration", type=int, help="Sample duration in seconds")(f)
    f = click.option("-m", "--microphone", required=True, help="Sound card id")(f)
    return f


def _preflight(config) -> None:
    from noisewatch.preflight import EnvironmentMissing, check_environment

    try:
        check_environment(config)
    except EnvironmentMissing as e:
        console.fatal(str(e))
        raise SystemExit(1)


def _monitor_config(config, microphone, duration, threshold, destination, verbose):
    from noisewatch.config import MonitorConfig, coerce_number

    if not config.alerts.token:
        raise click.UsageError(
            "No Pushover token configured. Set [alerts] token with 'noisewatch config edit'"
        )
    try:
        coerce_number(float, "alerts.timeout", config.alerts.timeout)
        return MonitorConfig.from_config(
            config,
            microphone=microphone,
            duration=duration,
            threshold=threshold,
            destination=destination,
            verbose=verbose,
        )
    except ValueError as e:
        raise click.UsageError(str(e)) from e


def _supervisor(config):
    from noisewatch.supervisor import ProcessRecord, Supervisor

    return Supervisor(ProcessRecord(config.pid_path))


@click.group()
@click.version_option(package_name="noisewatch")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (default ~/.config/noisewatch/config.toml)",
)
@click.pass_context
def main(ctx, config_path: Path | None) -> None:
    """Watch a microphone and push an alert when it gets too loud."""
    from noisewatch.config import Config

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = Config.load(config_path)
    except ValueError as e:
        console.fatal(str(e))
        raise SystemExit(1)
    ctx.obj["config_path"] = config_path


@main.command()
@_monitor_options
@click.pass_context
def start(ctx, microphone, duration, threshold, destination, verbose) -> None:
    """Start monitoring in the background."""
    from noisewatch.supervisor import monitor_command

    config = ctx.obj["config"]
    console.configure(config, verbose=verbose, source="cli")
    _preflight(config)
    monitor_config = _monitor_config(config, microphone, duration, threshold, destination, verbose)

    supervisor = _supervisor(config)
    running = supervisor.status()
    if running is not None:
        console.fatal(f"Monitor already running (PID {running}). Use 'noisewatch stop' first.")
        raise SystemExit(1)

    console.sensing_started()
    pid = supervisor.start(monitor_command(monitor_config, ctx.obj["config_path"]))
    console.monitor_started(pid)


@main.command()
@_monitor_options
@click.pass_context
def run(ctx, microphone, duration, threshold, destination, verbose) -> None:
    """Run the monitor in the foreground (for service managers)."""
    import asyncio

    from noisewatch.monitor import run_monitor

    config = ctx.obj["config"]
    console.configure(config, verbose=verbose)
    _preflight(config)
    monitor_config = _monitor_config(config, microphone, duration, threshold, destination, verbose)

    asyncio.run(run_monitor(config, monitor_config))


@main.command()
@click.pass_context
def stop(ctx) -> None:
    """Stop the background monitor."""
    from noisewatch.supervisor import ControlFailure

    config = ctx.obj["config"]
    console.configure(config, source="cli")
    try:
        pid = _supervisor(config).stop()
    except ControlFailure as e:
        console.fatal(str(e))
        raise SystemExit(1)
    click.echo(f"Stop signal sent to PID {pid}")


@main.command()
@click.pass_context
def ping(ctx) -> None:
    """Ask the monitor to log that it is listening."""
    from noisewatch.supervisor import ControlFailure

    config = ctx.obj["config"]
    console.configure(config, source="cli")
    try:
        pid = _supervisor(config).probe()
    except ControlFailure as e:
        console.fatal(str(e))
        raise SystemExit(1)
    click.echo(f"Probe sent to PID {pid}, see {config.log_path}")


@main.command()
@click.pass_context
def status(ctx) -> None:
    """Quick health check."""
    config = ctx.obj["config"]
    console.configure(config, source="cli")
    pid = _supervisor(config).status()
    if pid is None:
        click.echo("Monitor: stopped")
        if config.pid_path.exists():
            click.echo(f"Stale PID file: {config.pid_path}")
    else:
        click.echo(f"Monitor: running (PID {pid})")
    click.echo(f"Log: {config.log_path}")


@main.command()
@click.pass_context
def detect(ctx) -> None:
    """List the sound cards the kernel knows about."""
    from noisewatch.preflight import EnvironmentMissing, list_sound_cards

    config = ctx.obj["config"]
    console.configure(config, source="cli")
    click.echo("Detecting your soundcard...")
    try:
        click.echo(list_sound_cards(config))
    except EnvironmentMissing as e:
        console.fatal(str(e))
        raise SystemExit(1)


@main.command("test")
@click.argument("microphone")
@click.option("-s", "--sample", "duration", type=click.IntRange(min=1), help="Sample duration")
@click.pass_context
def test_card(ctx, microphone: str, duration: int | None) -> None:
    """Record one sample from MICROPHONE and print its statistics."""
    import asyncio

    from noisewatch.config import coerce_number
    from noisewatch.sampler import Sampler, SamplingFailure, parse_peak_amplitude

    config = ctx.obj["config"]
    console.configure(config, source="cli")
    _preflight(config)
    try:
        sampler = Sampler.from_config(config, microphone, duration)
        threshold = coerce_number(float, "alerts.threshold", config.alerts.threshold)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    async def _sample() -> str:
        await sampler.record()
        return await sampler.analyze()

    click.echo(f"Testing sound card {microphone} for {sampler.duration}s...")
    try:
        report = asyncio.run(_sample())
        click.echo(report.rstrip())
        amplitude = parse_peak_amplitude(report)
    except SamplingFailure as e:
        console.fatal(str(e))
        raise SystemExit(1)

    verdict = "would alert" if amplitude > threshold else "quiet"
    click.echo(f"\nPeak amplitude: {amplitude} (threshold {threshold}, {verdict})")


@main.group("config")
def config_group() -> None:
    """Manage configuration."""
    pass


@config_group.command("show")
@click.pass_context
def config_show(ctx) -> None:
    """Display current configuration."""
    cfg = ctx.obj["config"]
    path = ctx.obj["config_path"] or cfg.config_path

    click.echo(f"Config file: {path}")
    click.echo(f"Exists: {path.exists()}")
    click.echo()
    click.echo("[sampling]")
    click.echo(f"  duration = {cfg.sampling.duration}")
    click.echo(f"  format = {cfg.sampling.format}")
    click.echo(f"  record_path = {cfg.sampling.record_path}")
    click.echo()
    click.echo("[alerts]")
    click.echo(f"  threshold = {cfg.alerts.threshold}")
    click.echo(f"  cooldown = {cfg.alerts.cooldown}")
    click.echo(f"  endpoint = {cfg.alerts.endpoint}")
    click.echo(f"  token = {'(set)' if cfg.alerts.token else '(not set)'}")
    click.echo(f"  user = {cfg.alerts.user or '(not set)'}")
    click.echo()
    click.echo(f"PID file: {cfg.pid_path}")
    click.echo(f"Log file: {cfg.log_path}")


@config_group.command("edit")
@click.pass_context
def config_edit(ctx) -> None:
    """Open config file in editor."""
    import os
    import subprocess

    cfg = ctx.obj["config"]
    path = ctx.obj["config_path"] or cfg.config_path

    if not path.exists():
        cfg.save(path)
        click.echo(f"Created default config at {path}")

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(path)])


@config_group.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
@click.pass_context
def config_reset(ctx) -> None:
    """Reset configuration to defaults."""
    from noisewatch.config import Config

    cfg = Config()
    path = ctx.obj["config_path"] or cfg.config_path
    cfg.save(path)
    click.echo(f"Config reset to defaults at {path}")


if __name__ == "__main__":
    main()

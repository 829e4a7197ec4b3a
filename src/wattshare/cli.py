"""CLI commands for wattshare."""

from pathlib import Path

import click


@click.group()
@click.version_option()
def main() -> None:
    """Attribute CPU package energy to the applications using it."""
    pass


@main.command()
@click.option("--period", "period_ms", type=int, default=None, help="Tick period in ms (50-5000)")
@click.option("--duration", type=float, default=None, help="Stop after this many seconds")
@click.option("--top", "top_n", type=int, default=None, help="Number of apps to show and export")
@click.option(
    "--report",
    "report_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write a JSON session report on exit",
)
@click.option("--price", type=float, default=None, help="Energy price in EUR per kWh")
def run(
    period_ms: int | None,
    duration: float | None,
    top_n: int | None,
    report_path: Path | None,
    price: float | None,
) -> None:
    """Sample until interrupted and show per-app energy."""
    import asyncio

    from wattshare.config import Config, clamp_period_ms
    from wattshare.monitor import run_monitor

    try:
        cfg = Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    if period_ms is not None:
        cfg.scheduler.period_ms = clamp_period_ms(period_ms)
    if top_n is not None:
        if top_n < 1:
            raise click.BadParameter("must be >= 1", param_hint="--top")
        cfg.scheduler.top_n_apps = top_n
    if duration is not None and duration <= 0:
        raise click.BadParameter("must be > 0", param_hint="--duration")

    asyncio.run(run_monitor(cfg, duration=duration, report_path=report_path, price_per_kwh=price))


@main.command()
def sensors() -> None:
    """Show detected hardware and current power readings."""
    import time

    from wattshare import logging as console
    from wattshare.config import Config
    from wattshare.hardware import detect_hardware_names
    from wattshare.power import SystemPowerSource

    cfg = Config.load()
    power = SystemPowerSource.from_config(cfg.power.rapl_path, cfg.power.gpu_index)
    try:
        cpu_name, gpu_name = detect_hardware_names(power.gpu)
        click.echo(f"CPU: {cpu_name or 'unknown'}")
        click.echo(f"GPU: {gpu_name or 'none'}")
        click.echo()

        # RAPL needs two counter reads for a rate
        power.cpu_package_watts()
        time.sleep(0.5)

        for name, watts in power.read_all():
            console.sensor_summary(name, watts)
    finally:
        power.close()


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from wattshare.config import Config

    cfg = Config.load()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[engine]")
    click.echo(f"  min_dt_seconds = {cfg.engine.min_dt_seconds}")
    click.echo(f"  max_dt_seconds = {cfg.engine.max_dt_seconds}")
    click.echo(f"  cpu_watts = {cfg.engine.min_cpu_watts}..{cfg.engine.max_cpu_watts}")
    click.echo(f"  gpu_watts = {cfg.engine.min_gpu_watts}..{cfg.engine.max_gpu_watts}")
    click.echo(f"  enable_cpu_ema = {cfg.engine.enable_cpu_ema}")
    click.echo(f"  cpu_ema_tau_seconds = {cfg.engine.cpu_ema_tau_seconds}")
    click.echo(f"  min_process_cpu_percent = {cfg.engine.min_process_cpu_percent}")
    click.echo(f"  max_apps_per_tick = {cfg.engine.max_apps_per_tick}")
    click.echo()
    click.echo("[scheduler]")
    click.echo(f"  period_ms = {cfg.scheduler.period_ms}")
    click.echo(f"  top_n_apps = {cfg.scheduler.top_n_apps}")
    click.echo(f"  heartbeat_ticks = {cfg.scheduler.heartbeat_ticks}")
    click.echo()
    click.echo("[session]")
    click.echo(f"  keep_hardware_names_on_reset = {cfg.session.keep_hardware_names_on_reset}")
    click.echo()
    click.echo("[power]")
    click.echo(f"  rapl_path = {cfg.power.rapl_path}")
    click.echo(f"  gpu_index = {cfg.power.gpu_index}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from wattshare.config import Config

    cfg = Config.load()

    if not cfg.config_path.exists():
        cfg.save()
        click.echo(f"Created default config at {cfg.config_path}")

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from wattshare.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")

"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (monitor_started, new_peak, heartbeat, etc.)
5. Structlog configuration (configure)

Console output uses Rich markup for colors. JSON file output via structlog
remains separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

from wattshare.formatting import format_energy, format_ms, format_session_duration, format_watts

if TYPE_CHECKING:
    from rich.table import Table

    from wattshare.config import Config

_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    SAVE = "💾"
    HEARTBEAT = "[magenta]♡[/]"
    PEAK = "[bright_yellow]▲[/]"
    SIGNAL = "⚡"
    SENSOR = "[green]⬤[/]"
    NO_SENSOR = "[red]⬤[/]"


_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def monitor_started(period_ms: int, cpu_name: str | None, gpu_name: str | None) -> None:
    """Log monitor startup complete."""
    info(
        f"Monitoring every [cyan]{period_ms}[/] ms "
        f"[dim]({cpu_name or 'unknown CPU'} / {gpu_name or 'no GPU'})[/]",
        Icon.OK,
    )


def monitor_stopping() -> None:
    info("Monitor stopping...", Icon.WAIT)


def monitor_stopped(ticks: int, skipped: int) -> None:
    info(f"Monitor stopped [dim]({ticks} ticks, {skipped} skipped)[/]", Icon.OK)


def signal_received(name: str) -> None:
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def new_peak(kind: str, watts: float, t_seconds: float) -> None:
    """Log a new session-high power reading."""
    info(
        f"New [bold]{kind}[/] [bright_yellow]{format_watts(watts)}[/] "
        f"[dim]at {format_session_duration(t_seconds)}[/]",
        Icon.PEAK,
    )


def heartbeat(
    session_seconds: float,
    cpu_watts: float,
    gpu_watts: float,
    total_joules: float,
    apps_seen: int,
    dt_avg_seconds: float,
) -> None:
    """Log periodic session stats."""
    info(
        f"{format_session_duration(session_seconds)}: "
        f"CPU [cyan]{format_watts(cpu_watts)}[/], GPU [cyan]{format_watts(gpu_watts)}[/], "
        f"total [bold]{format_energy(total_joules)}[/] "
        f"[dim]({apps_seen} apps, dt {format_ms(dt_avg_seconds)})[/]",
        Icon.HEARTBEAT,
    )


def report_written(path: str) -> None:
    info(f"Report written to [cyan]{path}[/]", Icon.SAVE)


def print_table(table: Table) -> None:
    _console.print(table)


def sensor_summary(name: str, watts: float | None) -> None:
    """Log one power sensor reading."""
    if watts is None:
        warn(f"{name}: [dim]unavailable[/]", Icon.NO_SENSOR)
    else:
        info(f"{name}: [cyan]{format_watts(watts)}[/]", Icon.SENSOR)


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config) -> None:
    """Route structlog events to a rotating JSON Lines file.

    Console output is handled by the Rich helpers above; structlog only
    writes to the file for machine parsing.

    Args:
        config: Application config with paths
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
                structlog.processors.add_log_level,
                _add_source("monitor"),
                structlog.processors.format_exc_info,
            ],
        )
    )

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)
    stdlib_root.handlers.clear()
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.add_log_level,
            _add_source("monitor"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

"""Foreground monitor: wires sensors, engine, session and scheduler together."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import structlog
from rich.table import Table

from wattshare import logging as console
from wattshare.config import Config
from wattshare.engine import TickEngine, TickSnapshot
from wattshare.formatting import format_energy, format_watts
from wattshare.hardware import detect_hardware_names
from wattshare.power import SystemPowerSource
from wattshare.report import build_report, write_report
from wattshare.scheduler import TickScheduler
from wattshare.session import AppEnergyRow, SessionAggregator

log = structlog.get_logger()


def render_top_apps(rows: list[AppEnergyRow], limit: int = 15) -> Table:
    """Build a Rich table of applications ranked by session energy."""
    table = Table(title="Top apps by energy", title_justify="left", show_edge=False)
    table.add_column("App", style="cyan", no_wrap=True)
    table.add_column("CPU%", justify="right")
    table.add_column("Now", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Energy", justify="right", style="bold")
    table.add_column("Procs", justify="right", style="dim")

    for row in rows[:limit]:
        table.add_row(
            row.app_name,
            f"{row.last_cpu_percent:.1f}",
            format_watts(row.last_allocated_watts),
            format_watts(row.max_watts),
            format_energy(row.total_joules),
            f"{row.last_seen_process_count}/{row.process_count}",
        )
    return table


class ConsoleReporter:
    """Scheduler observer that prints peaks, heartbeats and the top-apps table.

    The heartbeat is the single periodic summary: every heartbeat_ticks
    applied ticks it writes a monitor_heartbeat event to the log file and
    the same numbers to the console.
    """

    def __init__(self, aggregator: SessionAggregator, heartbeat_ticks: int, top_n: int) -> None:
        self.aggregator = aggregator
        self.heartbeat_ticks = heartbeat_ticks
        self.top_n = top_n
        self._ticks = 0
        self._events_seen = 0
        self._session_id = aggregator.session_id

    def __call__(self, snap: TickSnapshot) -> None:
        session_id = self.aggregator.session_id
        if session_id != self._session_id:
            self._session_id = session_id
            self._events_seen = 0

        events = self.aggregator.get_events()
        for event in events[self._events_seen :]:
            console.new_peak(event.kind.value, event.value_watts, event.t_seconds)
        self._events_seen = len(events)

        self._ticks += 1
        if self._ticks % self.heartbeat_ticks:
            return

        totals = self.aggregator.get_totals()
        dt = self.aggregator.get_dt_stats()
        apps = self.aggregator.get_top_apps_by_energy(self.top_n)
        log.info(
            "monitor_heartbeat",
            ticks=self._ticks,
            cpu_w=round(totals.last_cpu_watts, 2),
            gpu_w=round(totals.last_gpu_watts, 2),
            total_wh=round(totals.total_wh, 4),
            apps_seen=len(apps),
            dt_avg_ms=round(dt.avg_seconds * 1000, 1),
        )
        console.heartbeat(
            session_seconds=totals.session_seconds,
            cpu_watts=totals.last_cpu_watts,
            gpu_watts=totals.last_gpu_watts,
            total_joules=totals.total_cpu_joules + totals.total_gpu_joules,
            apps_seen=len(apps),
            dt_avg_seconds=dt.avg_seconds,
        )
        console.print_table(render_top_apps(apps))


async def run_monitor(
    config: Config | None = None,
    duration: float | None = None,
    report_path: Path | None = None,
    price_per_kwh: float | None = None,
) -> SessionAggregator:
    """Run the monitor until a signal arrives or duration elapses.

    Args:
        config: Optional config, loads from file if not provided
        duration: Seconds to run, or None to run until SIGINT/SIGTERM
        report_path: Where to write the JSON session report on exit
        price_per_kwh: Energy price recorded in the report

    Returns:
        The session aggregator, for callers that want the final numbers.
    """
    if config is None:
        config = Config.load()

    console.configure(config)

    power = SystemPowerSource.from_config(config.power.rapl_path, config.power.gpu_index)
    engine = TickEngine(config.engine, power)
    aggregator = SessionAggregator(config.session.keep_hardware_names_on_reset)
    scheduler = TickScheduler(
        engine,
        aggregator,
        config.scheduler,
        resolve_hardware=lambda: detect_hardware_names(power.gpu),
    )
    scheduler.add_observer(
        ConsoleReporter(aggregator, config.scheduler.heartbeat_ticks, config.scheduler.top_n_apps)
    )

    stop_requested = asyncio.Event()

    def handle_signal(sig: signal.Signals) -> None:
        log.info("signal_received", signal=sig.name)
        console.signal_received(sig.name)
        stop_requested.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    try:
        await scheduler.start()
        cpu_name, gpu_name = aggregator.get_hardware_names()
        console.monitor_started(scheduler.period_ms, cpu_name, gpu_name)

        try:
            await asyncio.wait_for(stop_requested.wait(), timeout=duration)
        except asyncio.TimeoutError:
            log.info("duration_elapsed", duration=duration)
    except Exception as e:
        log.exception("monitor_crashed", error=str(e))
        console.error(f"Monitor crashed: {e}", console.Icon.FAIL)
        raise
    finally:
        console.monitor_stopping()
        await scheduler.stop()
        console.monitor_stopped(scheduler.state.tick_count, scheduler.state.skipped_count)
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        power.close()

    if report_path is not None:
        report = build_report(aggregator, config.scheduler.top_n_apps, price_per_kwh)
        write_report(report_path, report)
        log.info("report_written", path=str(report_path))
        console.report_written(str(report_path))

    return aggregator

"""Tick computation: per-app share of measured CPU package power.

Each tick measures the real elapsed time, turns process CPU-time deltas into
CPU%, reads total CPU/GPU package power, smooths CPU power with an EMA and
splits it across applications in proportion to their CPU%. The result is an
immutable TickSnapshot of per-tick deltas; nothing is accumulated here.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from wattshare.config import EngineConfig
from wattshare.power import PowerSource
from wattshare.processes import ProcessSample, read_process_samples
from wattshare.sampler import ProcessTimeDeltaSampler

log = structlog.get_logger()

UNKNOWN_APP = "unknown"
EXE_SUFFIX = ".exe"


@dataclass(frozen=True)
class AppTickRow:
    """One application's share of a single tick."""

    app_name: str
    processes_now: int  # Processes of this app active in the tick
    cpu_percent_now: float  # Sum of CPU% over those processes
    cpu_watts_now: float  # Watts allocated to the app
    cpu_delta_joules: float  # Energy allocated for this tick only
    pids_now: tuple[int, ...]
    cpu_watts_raw_total_now: float
    cpu_watts_filtered_total_now: float | None


@dataclass(frozen=True)
class TickSnapshot:
    """Result of one tick. Created once by TickEngine, read-only afterwards."""

    timestamp_utc: datetime
    delta_seconds: float
    cpu_watts_raw: float
    cpu_watts_filtered: float | None
    gpu_watts_raw: float
    cpu_delta_joules_total: float
    gpu_delta_joules_total: float
    apps: tuple[AppTickRow, ...]

    @property
    def cpu_watts(self) -> float:
        """Effective CPU watts: filtered when available, raw otherwise."""
        return self.cpu_watts_filtered if self.cpu_watts_filtered is not None else self.cpu_watts_raw


@dataclass
class _AppAggregate:
    app_name: str
    processes_now: int = 0
    cpu_percent_sum: float = 0.0
    pids_now: list[int] = field(default_factory=list)


def normalize_app_name(name: str | None, strip_exe_suffix: bool = True) -> str:
    """Display name used to group processes into applications."""
    if name is None or not name.strip():
        return UNKNOWN_APP
    name = name.strip()
    if strip_exe_suffix and name.lower().endswith(EXE_SUFFIX) and len(name) > len(EXE_SUFFIX):
        name = name[: -len(EXE_SUFFIX)]
    return name


def app_key(name: str) -> str:
    """Case-insensitive grouping key for an application name."""
    return name.casefold()


def _plausible(watts: float | None, low: float, high: float) -> float:
    """Return watts if finite and within [low, high], else 0."""
    if watts is None or not math.isfinite(watts) or watts < low or watts > high:
        return 0.0
    return float(watts)


class TickEngine:
    """Produces one TickSnapshot per call to execute_tick().

    Only two pieces of state survive between ticks: the previous tick time
    (for dt) and the EMA of CPU package watts.
    """

    def __init__(
        self,
        config: EngineConfig,
        power: PowerSource,
        read_processes: Callable[[], list[ProcessSample]] = read_process_samples,
        sampler: ProcessTimeDeltaSampler | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.config = config
        self._power = power
        self._read_processes = read_processes
        self._clock = clock
        self._sampler = sampler or ProcessTimeDeltaSampler(clock=clock)
        self._cpu_ema_watts: float | None = None

        # Baseline so the first scheduled tick already has a delta
        self._sampler.tick(self._read_processes())
        self._last_time = self._clock()

    @property
    def cpu_ema_watts(self) -> float | None:
        return self._cpu_ema_watts

    def apply_cpu_ema(self, watts: float, dt: float) -> float:
        """Update the CPU power EMA and return the filtered value.

        The first observation seeds the filter.
        """
        tau = max(0.001, self.config.cpu_ema_tau_seconds)
        if self._cpu_ema_watts is None:
            self._cpu_ema_watts = watts
            return watts
        alpha = 1.0 - math.exp(-dt / tau)
        self._cpu_ema_watts = alpha * watts + (1.0 - alpha) * self._cpu_ema_watts
        return self._cpu_ema_watts

    def execute_tick(self) -> TickSnapshot | None:
        """Run one measurement cycle.

        Returns None when the tick must be skipped: dt outside the configured
        window, or no process usage available yet.
        """
        cfg = self.config

        now = self._clock()
        dt = now - self._last_time
        self._last_time = now

        if dt < cfg.min_dt_seconds or dt > cfg.max_dt_seconds:
            log.debug("tick_dt_out_of_range", dt=round(dt, 4))
            return None

        usages = self._sampler.tick(self._read_processes())
        if not usages:
            return None

        # Noise filter + grouping key
        procs = [
            (u.pid, normalize_app_name(u.name, cfg.strip_exe_suffix), u.cpu_percent)
            for u in usages
            if u.cpu_percent >= cfg.min_process_cpu_percent
        ]

        cpu_watts_raw = self._read_watts(
            self._power.cpu_package_watts(), cfg.min_cpu_watts, cfg.max_cpu_watts, "cpu"
        )
        gpu_watts_raw = self._read_watts(
            self._power.gpu_package_watts(), cfg.min_gpu_watts, cfg.max_gpu_watts, "gpu"
        )

        cpu_watts_filtered: float | None = None
        allocation_watts = cpu_watts_raw
        if cfg.enable_cpu_ema and cpu_watts_raw > 0.0:
            cpu_watts_filtered = self.apply_cpu_ema(cpu_watts_raw, dt)
            allocation_watts = cpu_watts_filtered

        groups: dict[str, _AppAggregate] = {}
        for pid, app_name, cpu_percent in procs:
            agg = groups.get(app_key(app_name))
            if agg is None:
                agg = groups[app_key(app_name)] = _AppAggregate(app_name=app_name)
            agg.processes_now += 1
            agg.cpu_percent_sum += cpu_percent
            if pid not in agg.pids_now:
                agg.pids_now.append(pid)

        # Denominator covers every app, not just the ones emitted
        total_cpu_percent = sum(a.cpu_percent_sum for a in groups.values())

        selected = sorted(groups.values(), key=lambda a: a.cpu_percent_sum, reverse=True)
        selected = selected[: cfg.max_apps_per_tick]

        rows: list[AppTickRow] = []
        cpu_delta_joules_total = 0.0
        for agg in selected:
            if allocation_watts > 0 and total_cpu_percent > 0:
                watts = allocation_watts * (agg.cpu_percent_sum / total_cpu_percent)
            else:
                watts = 0.0
            delta_joules = watts * dt
            cpu_delta_joules_total += delta_joules
            rows.append(
                AppTickRow(
                    app_name=agg.app_name,
                    processes_now=agg.processes_now,
                    cpu_percent_now=agg.cpu_percent_sum,
                    cpu_watts_now=watts,
                    cpu_delta_joules=delta_joules,
                    pids_now=tuple(agg.pids_now),
                    cpu_watts_raw_total_now=cpu_watts_raw,
                    cpu_watts_filtered_total_now=cpu_watts_filtered,
                )
            )

        rows.sort(key=lambda r: r.cpu_watts_now, reverse=True)

        return TickSnapshot(
            timestamp_utc=datetime.now(timezone.utc),
            delta_seconds=dt,
            cpu_watts_raw=cpu_watts_raw,
            cpu_watts_filtered=cpu_watts_filtered,
            gpu_watts_raw=gpu_watts_raw,
            cpu_delta_joules_total=cpu_delta_joules_total,
            gpu_delta_joules_total=gpu_watts_raw * dt,
            apps=tuple(rows),
        )

    @staticmethod
    def _read_watts(value: float | None, low: float, high: float, sensor: str) -> float:
        watts = _plausible(value, low, high)
        if value is not None and watts == 0.0 and value != 0.0:
            log.debug("power_reading_rejected", sensor=sensor, value=value)
        return watts

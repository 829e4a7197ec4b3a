"""Session accumulation of tick snapshots.

SessionAggregator is the only owner of session state: totals, per-app
accumulators, peaks, the 1-second timeline and the peak event log. Every
public method runs under one lock, so readers on other threads always see
whole ticks. Every read returns copies or frozen values.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from wattshare.engine import TickSnapshot, app_key
from wattshare.formatting import joules_to_wh

TIMELINE_BUCKET_SECONDS = 1.0


class PeakKind(str, Enum):
    """Metric that reached a new session maximum."""

    CPU = "CPU_PEAK"
    GPU = "GPU_PEAK"
    TOTAL = "TOTAL_PEAK"


@dataclass(frozen=True)
class PeakEvent:
    """A new session-high power reading."""

    timestamp_utc: datetime
    t_seconds: float  # Session time at the tick
    kind: PeakKind
    app_name: str | None
    value_watts: float
    notes: str | None = None


@dataclass(frozen=True)
class TimelinePoint:
    """Time-weighted averages over one closed bucket of at least one second."""

    timestamp_utc: datetime
    t_seconds: float
    dt_seconds: float
    cpu_watts_avg: float
    gpu_watts_avg: float
    total_watts_avg: float
    cpu_wh_cumulative: float
    gpu_wh_cumulative: float
    total_wh_cumulative: float


@dataclass(frozen=True)
class SessionTotals:
    last_cpu_watts: float
    total_cpu_joules: float
    last_gpu_watts: float
    total_gpu_joules: float
    session_seconds: float

    @property
    def total_cpu_wh(self) -> float:
        return joules_to_wh(self.total_cpu_joules)

    @property
    def total_gpu_wh(self) -> float:
        return joules_to_wh(self.total_gpu_joules)

    @property
    def total_wh(self) -> float:
        return joules_to_wh(self.total_cpu_joules + self.total_gpu_joules)


@dataclass(frozen=True)
class AppEnergyRow:
    """Session view of one application.

    process_count is the number of distinct pids seen during the session;
    last_seen_process_count is the number active in the latest tick.
    """

    app_name: str
    last_cpu_percent: float
    last_allocated_watts: float
    total_joules: float
    max_watts: float
    process_count: int
    last_seen_process_count: int

    @property
    def total_wh(self) -> float:
        return joules_to_wh(self.total_joules)


@dataclass(frozen=True)
class PeakSummary:
    """Session maxima. A *_utc of None means no peak recorded yet."""

    cpu_peak_watts: float
    cpu_peak_utc: datetime | None
    gpu_peak_watts: float
    gpu_peak_utc: datetime | None
    total_peak_watts: float
    total_peak_utc: datetime | None


@dataclass(frozen=True)
class DtStats:
    """Tick interval jitter in seconds."""

    min_seconds: float
    avg_seconds: float
    max_seconds: float
    count: int


@dataclass(frozen=True)
class SessionBounds:
    start_utc: datetime
    end_utc: datetime


@dataclass
class _AppAccumulator:
    app_name: str
    last_cpu_percent: float = 0.0
    last_watts: float = 0.0
    last_processes_now: int = 0
    total_joules: float = 0.0
    max_watts: float = 0.0
    pids_ever_seen: set[int] = field(default_factory=set)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionAggregator:
    """Accumulates TickSnapshots into session history."""

    def __init__(
        self,
        keep_hardware_names_on_reset: bool = False,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._lock = threading.Lock()
        self._now = now
        self.keep_hardware_names_on_reset = keep_hardware_names_on_reset
        self._cpu_name: str | None = None
        self._gpu_name: str | None = None
        self._session_id = 0
        self._clear()

    def _clear(self) -> None:
        """Reset session state. Caller holds the lock (or is __init__)."""
        self._apps: dict[str, _AppAccumulator] = {}

        self._total_cpu_j = 0.0
        self._total_gpu_j = 0.0
        self._last_cpu_w = 0.0
        self._last_gpu_w = 0.0
        self._session_seconds = 0.0

        self._session_start_utc = self._now()
        self._last_tick_utc = self._session_start_utc

        self._dt_min: float | None = None
        self._dt_max = 0.0
        self._dt_sum = 0.0
        self._dt_count = 0

        self._cpu_peak_w = 0.0
        self._cpu_peak_utc: datetime | None = None
        self._gpu_peak_w = 0.0
        self._gpu_peak_utc: datetime | None = None
        self._total_peak_w = 0.0
        self._total_peak_utc: datetime | None = None

        self._timeline: list[TimelinePoint] = []
        self._events: list[PeakEvent] = []

        self._bucket_dt = 0.0
        self._bucket_cpu_ws = 0.0  # Watt-seconds
        self._bucket_gpu_ws = 0.0

    @property
    def session_id(self) -> int:
        """Number of resets so far; changes whenever a new session begins."""
        with self._lock:
            return self._session_id

    # ─────────────────────────────────────────────────────────────────────
    # Hardware identity
    # ─────────────────────────────────────────────────────────────────────

    def set_hardware_names(self, cpu_name: str | None, gpu_name: str | None) -> None:
        """Store device labels. Blank values never overwrite existing ones."""
        with self._lock:
            if cpu_name and cpu_name.strip():
                self._cpu_name = cpu_name.strip()
            if gpu_name and gpu_name.strip():
                self._gpu_name = gpu_name.strip()

    def get_hardware_names(self) -> tuple[str | None, str | None]:
        with self._lock:
            return self._cpu_name, self._gpu_name

    # ─────────────────────────────────────────────────────────────────────
    # Mutation
    # ─────────────────────────────────────────────────────────────────────

    def reset(self) -> None:
        """Start a new session."""
        with self._lock:
            self._clear()
            self._session_id += 1
            if not self.keep_hardware_names_on_reset:
                self._cpu_name = None
                self._gpu_name = None

    def apply_snapshot(self, snap: TickSnapshot) -> list[PeakEvent]:
        """Fold one tick into the session.

        Returns the peak events this tick produced (also kept in the event log).
        """
        with self._lock:
            dt = snap.delta_seconds
            cpu_w = snap.cpu_watts
            gpu_w = snap.gpu_watts_raw
            total_w = cpu_w + gpu_w

            self._session_seconds += dt
            self._last_cpu_w = cpu_w
            self._last_gpu_w = gpu_w
            self._total_cpu_j += snap.cpu_delta_joules_total
            self._total_gpu_j += snap.gpu_delta_joules_total
            self._last_tick_utc = snap.timestamp_utc

            # Jitter
            self._dt_min = dt if self._dt_min is None else min(self._dt_min, dt)
            self._dt_max = max(self._dt_max, dt)
            self._dt_sum += dt
            self._dt_count += 1

            new_events = self._detect_peaks(snap.timestamp_utc, cpu_w, gpu_w, total_w)
            self._advance_timeline(snap.timestamp_utc, dt, cpu_w, gpu_w)
            self._update_apps(snap)
            return new_events

    def _detect_peaks(
        self, ts: datetime, cpu_w: float, gpu_w: float, total_w: float
    ) -> list[PeakEvent]:
        events: list[PeakEvent] = []
        if cpu_w > self._cpu_peak_w:
            self._cpu_peak_w, self._cpu_peak_utc = cpu_w, ts
            events.append(PeakEvent(ts, self._session_seconds, PeakKind.CPU, None, cpu_w))
        if gpu_w > self._gpu_peak_w:
            self._gpu_peak_w, self._gpu_peak_utc = gpu_w, ts
            events.append(PeakEvent(ts, self._session_seconds, PeakKind.GPU, None, gpu_w))
        if total_w > self._total_peak_w:
            self._total_peak_w, self._total_peak_utc = total_w, ts
            events.append(PeakEvent(ts, self._session_seconds, PeakKind.TOTAL, None, total_w))
        self._events.extend(events)
        return events

    def _advance_timeline(self, ts: datetime, dt: float, cpu_w: float, gpu_w: float) -> None:
        self._bucket_dt += dt
        self._bucket_cpu_ws += cpu_w * dt
        self._bucket_gpu_ws += gpu_w * dt

        if self._bucket_dt < TIMELINE_BUCKET_SECONDS:
            return

        cpu_avg = self._bucket_cpu_ws / self._bucket_dt
        gpu_avg = self._bucket_gpu_ws / self._bucket_dt
        cpu_wh = joules_to_wh(self._total_cpu_j)
        gpu_wh = joules_to_wh(self._total_gpu_j)
        self._timeline.append(
            TimelinePoint(
                timestamp_utc=ts,
                t_seconds=self._session_seconds,
                dt_seconds=self._bucket_dt,
                cpu_watts_avg=cpu_avg,
                gpu_watts_avg=gpu_avg,
                total_watts_avg=cpu_avg + gpu_avg,
                cpu_wh_cumulative=cpu_wh,
                gpu_wh_cumulative=gpu_wh,
                total_wh_cumulative=cpu_wh + gpu_wh,
            )
        )
        self._bucket_dt = 0.0
        self._bucket_cpu_ws = 0.0
        self._bucket_gpu_ws = 0.0

    def _update_apps(self, snap: TickSnapshot) -> None:
        # Apps missing from this tick read as zero-now but keep their history
        for acc in self._apps.values():
            acc.last_cpu_percent = 0.0
            acc.last_watts = 0.0
            acc.last_processes_now = 0

        for row in snap.apps:
            key = app_key(row.app_name)
            acc = self._apps.get(key)
            if acc is None:
                acc = self._apps[key] = _AppAccumulator(app_name=row.app_name)

            acc.last_cpu_percent = row.cpu_percent_now
            acc.last_watts = row.cpu_watts_now
            acc.last_processes_now = row.processes_now
            acc.total_joules += row.cpu_delta_joules
            if row.cpu_watts_now > acc.max_watts:
                acc.max_watts = row.cpu_watts_now
            acc.pids_ever_seen.update(row.pids_now)

    # ─────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────

    def get_totals(self) -> SessionTotals:
        with self._lock:
            return SessionTotals(
                last_cpu_watts=self._last_cpu_w,
                total_cpu_joules=self._total_cpu_j,
                last_gpu_watts=self._last_gpu_w,
                total_gpu_joules=self._total_gpu_j,
                session_seconds=self._session_seconds,
            )

    def get_top_apps_by_energy(self, n: int = 200) -> list[AppEnergyRow]:
        """Applications ordered by session energy, highest first."""
        with self._lock:
            ranked = sorted(self._apps.values(), key=lambda a: a.total_joules, reverse=True)
            return [
                AppEnergyRow(
                    app_name=a.app_name,
                    last_cpu_percent=a.last_cpu_percent,
                    last_allocated_watts=a.last_watts,
                    total_joules=a.total_joules,
                    max_watts=a.max_watts,
                    process_count=len(a.pids_ever_seen),
                    last_seen_process_count=a.last_processes_now,
                )
                for a in ranked[: max(0, n)]
            ]

    def get_timeline_total(self) -> list[TimelinePoint]:
        with self._lock:
            return list(self._timeline)

    def get_events(self) -> list[PeakEvent]:
        with self._lock:
            return list(self._events)

    def get_peaks(self) -> PeakSummary:
        with self._lock:
            return PeakSummary(
                cpu_peak_watts=self._cpu_peak_w,
                cpu_peak_utc=self._cpu_peak_utc,
                gpu_peak_watts=self._gpu_peak_w,
                gpu_peak_utc=self._gpu_peak_utc,
                total_peak_watts=self._total_peak_w,
                total_peak_utc=self._total_peak_utc,
            )

    def get_dt_stats(self) -> DtStats:
        with self._lock:
            avg = self._dt_sum / self._dt_count if self._dt_count else 0.0
            return DtStats(
                min_seconds=self._dt_min if self._dt_min is not None else 0.0,
                avg_seconds=avg,
                max_seconds=self._dt_max,
                count=self._dt_count,
            )

    def get_session_bounds(self) -> SessionBounds:
        with self._lock:
            return SessionBounds(start_utc=self._session_start_utc, end_utc=self._last_tick_utc)

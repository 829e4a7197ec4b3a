"""Shared test fixtures for wattshare."""

from datetime import datetime, timedelta, timezone

import pytest

from wattshare.engine import AppTickRow, TickSnapshot
from wattshare.processes import ProcessSample

T0 = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePowerSource:
    """PowerSource returning fixed readings."""

    def __init__(self, cpu: float | None = None, gpu: float | None = None) -> None:
        self.cpu = cpu
        self.gpu = gpu

    def cpu_package_watts(self) -> float | None:
        return self.cpu

    def gpu_package_watts(self) -> float | None:
        return self.gpu


class FakeProcessTable:
    """Process table whose CPU times are advanced by hand."""

    def __init__(self) -> None:
        self.procs: dict[int, ProcessSample] = {}

    def set(self, pid: int, name: str, cpu_time_total: float = 0.0) -> None:
        self.procs[pid] = ProcessSample(pid=pid, name=name, cpu_time_total=cpu_time_total)

    def add_cpu(self, pid: int, seconds: float) -> None:
        p = self.procs[pid]
        self.procs[pid] = ProcessSample(p.pid, p.name, p.cpu_time_total + seconds)

    def remove(self, pid: int) -> None:
        del self.procs[pid]

    def __call__(self) -> list[ProcessSample]:
        return list(self.procs.values())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def power() -> FakePowerSource:
    return FakePowerSource(cpu=50.0, gpu=0.0)


@pytest.fixture
def process_table() -> FakeProcessTable:
    return FakeProcessTable()


def make_row(
    app_name: str = "app",
    watts: float = 10.0,
    dt: float = 0.5,
    pids: tuple[int, ...] = (1,),
    cpu_percent: float = 10.0,
) -> AppTickRow:
    """Create an AppTickRow whose energy is watts * dt."""
    return AppTickRow(
        app_name=app_name,
        processes_now=len(pids),
        cpu_percent_now=cpu_percent,
        cpu_watts_now=watts,
        cpu_delta_joules=watts * dt,
        pids_now=pids,
        cpu_watts_raw_total_now=watts,
        cpu_watts_filtered_total_now=None,
    )


def make_snapshot(
    dt: float = 0.5,
    cpu_watts: float = 10.0,
    gpu_watts: float = 0.0,
    apps: list[AppTickRow] | None = None,
    timestamp: datetime | None = None,
    cpu_watts_filtered: float | None = None,
) -> TickSnapshot:
    """Create a TickSnapshot.

    CPU delta energy is the sum of the app rows, or cpu_watts * dt when no
    rows are given.
    """
    apps = apps or []
    cpu_joules = sum(r.cpu_delta_joules for r in apps) if apps else cpu_watts * dt
    return TickSnapshot(
        timestamp_utc=timestamp or T0,
        delta_seconds=dt,
        cpu_watts_raw=cpu_watts,
        cpu_watts_filtered=cpu_watts_filtered,
        gpu_watts_raw=gpu_watts,
        cpu_delta_joules_total=cpu_joules,
        gpu_delta_joules_total=gpu_watts * dt,
        apps=tuple(apps),
    )


def ts(seconds: float) -> datetime:
    """Timestamp `seconds` after T0."""
    return T0 + timedelta(seconds=seconds)

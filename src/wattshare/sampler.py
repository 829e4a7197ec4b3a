"""Per-process CPU% from cumulative CPU time deltas."""

import math
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

import psutil

from wattshare.processes import ProcessSample


@dataclass(frozen=True)
class ProcessUsage:
    """CPU usage of one process over the interval between two ticks.

    cpu_percent is normalized to the whole machine: 100 means every logical
    core busy for the full interval.
    """

    pid: int
    name: str
    cpu_percent: float
    cpu_time_delta: float  # Seconds of CPU time consumed in the interval
    interval_seconds: float


def get_logical_core_count() -> int:
    """Return the number of logical processors, at least 1."""
    return max(1, psutil.cpu_count(logical=True) or 1)


class ProcessTimeDeltaSampler:
    """Turns successive process-table snapshots into CPU% per process.

    Keeps the previous snapshot keyed by pid. The map is rebuilt on every
    tick, so exited processes fall out by omission. New pids need one tick
    of history before they report usage.
    """

    def __init__(
        self,
        logical_cores: int | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._logical_cores = max(1, logical_cores or get_logical_core_count())
        self._clock = clock
        self._prev_by_pid: dict[int, ProcessSample] = {}
        self._last_tick: float | None = None

    @property
    def logical_cores(self) -> int:
        return self._logical_cores

    @property
    def has_baseline(self) -> bool:
        return self._last_tick is not None

    def reset(self) -> None:
        """Forget the baseline; the next tick only records a new one."""
        self._prev_by_pid.clear()
        self._last_tick = None

    def tick(self, samples: Iterable[ProcessSample]) -> list[ProcessUsage]:
        """Compute usage for every pid present in both this and the previous call."""
        now = self._clock()
        current = list(samples)

        if self._last_tick is None:
            self._set_baseline(now, current)
            return []

        interval = now - self._last_tick
        if interval <= 0:
            self._set_baseline(now, current)
            return []

        results: list[ProcessUsage] = []
        for cur in current:
            prev = self._prev_by_pid.get(cur.pid)
            if prev is None:
                continue  # No history yet

            delta = cur.cpu_time_total - prev.cpu_time_total
            if delta < 0:
                continue  # pid reuse or a bad read

            cpu_percent = (delta / interval) / self._logical_cores * 100.0
            if not math.isfinite(cpu_percent):
                continue
            cpu_percent = max(0.0, min(100.0, cpu_percent))

            results.append(
                ProcessUsage(
                    pid=cur.pid,
                    name=cur.name,
                    cpu_percent=cpu_percent,
                    cpu_time_delta=delta,
                    interval_seconds=interval,
                )
            )

        self._set_baseline(now, current)
        return results

    def _set_baseline(self, now: float, current: list[ProcessSample]) -> None:
        self._last_tick = now
        self._prev_by_pid = {s.pid: s for s in current}

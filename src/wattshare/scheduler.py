"""Periodic tick scheduling.

TickScheduler owns the firing loop: every period it starts one tick unless the
previous one is still running, runs the blocking tick body in the default
executor, applies the snapshot to the session and notifies observers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog

from wattshare.config import SchedulerConfig, clamp_period_ms
from wattshare.engine import TickEngine, TickSnapshot
from wattshare.hardware import detect_hardware_names
from wattshare.session import SessionAggregator

log = structlog.get_logger()

Observer = Callable[[TickSnapshot], None]


@dataclass
class SchedulerState:
    """Runtime state of the scheduler."""

    running: bool = False
    tick_count: int = 0  # Snapshots applied
    skipped_count: int = 0  # Firings dropped because a tick was in flight
    failed_count: int = 0
    last_tick_time: datetime | None = None

    def update_tick(self, snap: TickSnapshot) -> None:
        """Update state after an applied tick."""
        self.tick_count += 1
        self.last_tick_time = snap.timestamp_utc


class TickScheduler:
    """Fires TickEngine ticks at a fixed period and feeds the aggregator."""

    def __init__(
        self,
        engine: TickEngine,
        aggregator: SessionAggregator,
        config: SchedulerConfig | None = None,
        resolve_hardware: Callable[[], tuple[str | None, str | None]] = detect_hardware_names,
    ) -> None:
        self.config = config or SchedulerConfig()
        self.engine = engine
        self.aggregator = aggregator
        self.state = SchedulerState()

        self._resolve_hardware = resolve_hardware
        self._period_ms = clamp_period_ms(self.config.period_ms)
        self._observers: list[Observer] = []

        self._tick_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._tick_tasks: set[asyncio.Task] = set()

    @property
    def period_ms(self) -> int:
        return self._period_ms

    @property
    def running(self) -> bool:
        return self.state.running

    def set_period(self, ms: int) -> int:
        """Change the tick period. Takes effect from the next firing."""
        self._period_ms = clamp_period_ms(ms)
        self._wakeup.set()
        log.info("period_changed", period_ms=self._period_ms)
        return self._period_ms

    def add_observer(self, callback: Observer) -> None:
        """Register a callback invoked after every applied tick."""
        self._observers.append(callback)

    def remove_observer(self, callback: Observer) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def reset(self) -> None:
        """Start a new session on the aggregator."""
        self.aggregator.reset()
        log.info("session_reset")

    async def start(self) -> None:
        """Begin periodic ticking; the first tick fires immediately."""
        if self.state.running:
            return

        # Claimed before the first await so overlapping calls see it
        self.state.running = True
        self._stop_event.clear()

        cpu_name, gpu_name = self.aggregator.get_hardware_names()
        if not cpu_name or not gpu_name:
            loop = asyncio.get_running_loop()
            try:
                cpu_name, gpu_name = await loop.run_in_executor(None, self._resolve_hardware)
            except Exception:
                self.state.running = False
                raise
            self.aggregator.set_hardware_names(cpu_name, gpu_name)
            log.info("hardware_resolved", cpu=cpu_name, gpu=gpu_name)

        if self._stop_event.is_set():
            return  # stop() ran while names were resolving

        self._loop_task = asyncio.create_task(self._main_loop())
        log.info("scheduler_started", period_ms=self._period_ms)

    async def stop(self) -> None:
        """Stop firing. A tick already in flight is allowed to finish."""
        if not self.state.running:
            return

        log.info("scheduler_stopping")
        self.state.running = False
        self._stop_event.set()
        self._wakeup.set()

        if self._loop_task:
            await self._loop_task
            self._loop_task = None

        if self._tick_tasks:
            await asyncio.gather(*self._tick_tasks, return_exceptions=True)

        log.info(
            "scheduler_stopped",
            ticks=self.state.tick_count,
            skipped=self.state.skipped_count,
            failed=self.state.failed_count,
        )

    async def _main_loop(self) -> None:
        """Fire ticks until the stop event is set.

        The tick lock is taken here, before the tick task is created, so a
        firing that finds it held is dropped rather than queued.
        """
        loop = asyncio.get_running_loop()

        while not self._stop_event.is_set():
            fired_at = loop.time()

            if self._tick_lock.locked():
                self.state.skipped_count += 1
                log.debug("tick_skipped_in_flight", skipped=self.state.skipped_count)
            else:
                await self._tick_lock.acquire()
                task = asyncio.create_task(self._run_tick())
                self._tick_tasks.add(task)
                task.add_done_callback(self._tick_tasks.discard)

            await self._sleep_until_next(fired_at)

    async def _sleep_until_next(self, fired_at: float) -> None:
        """Sleep until one period after fired_at.

        A period change or stop wakes the sleep; the remaining time is then
        recomputed against the current period.
        """
        loop = asyncio.get_running_loop()

        while not self._stop_event.is_set():
            remaining = self._period_ms / 1000.0 - (loop.time() - fired_at)
            if remaining <= 0:
                await asyncio.sleep(0)
                return
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return  # Normal timeout, fire the next tick

    async def _run_tick(self) -> None:
        """One tick: compute off-loop, apply, notify. Releases the tick lock."""
        try:
            loop = asyncio.get_running_loop()
            snap = await loop.run_in_executor(None, self.engine.execute_tick)
            if snap is None:
                return

            for event in self.aggregator.apply_snapshot(snap):
                log.info(
                    "session_peak",
                    kind=event.kind.value,
                    watts=round(event.value_watts, 2),
                    t_seconds=round(event.t_seconds, 2),
                )
            self.state.update_tick(snap)
            self._notify(snap)
        except Exception as e:
            self.state.failed_count += 1
            log.exception("tick_failed", error=str(e))
        finally:
            self._tick_lock.release()

    def _notify(self, snap: TickSnapshot) -> None:
        for callback in list(self._observers):
            try:
                callback(snap)
            except Exception as e:
                log.exception("observer_failed", observer=repr(callback), error=str(e))


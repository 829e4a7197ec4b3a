"""Tests for per-process CPU% sampling."""

from unittest.mock import patch

import pytest
from conftest import FakeClock

from wattshare.processes import ProcessSample
from wattshare.sampler import ProcessTimeDeltaSampler, get_logical_core_count


def sample(pid: int, cpu: float, name: str = "proc") -> ProcessSample:
    return ProcessSample(pid=pid, name=name, cpu_time_total=cpu)


@pytest.fixture
def sampler(clock: FakeClock) -> ProcessTimeDeltaSampler:
    return ProcessTimeDeltaSampler(logical_cores=4, clock=clock)


def test_first_tick_only_records_baseline(sampler):
    """The first call returns nothing and sets the baseline."""
    assert not sampler.has_baseline
    assert sampler.tick([sample(1, 5.0)]) == []
    assert sampler.has_baseline


def test_cpu_percent_normalized_to_all_cores(sampler, clock):
    """2s of CPU over 1s on 4 cores is 50%."""
    sampler.tick([sample(1, 10.0)])
    clock.advance(1.0)

    usages = sampler.tick([sample(1, 12.0)])

    assert len(usages) == 1
    assert usages[0].pid == 1
    assert usages[0].cpu_percent == pytest.approx(50.0)
    assert usages[0].cpu_time_delta == pytest.approx(2.0)
    assert usages[0].interval_seconds == pytest.approx(1.0)


def test_cpu_percent_clamped_to_100(sampler, clock):
    """Deltas beyond cores * interval are clamped."""
    sampler.tick([sample(1, 0.0)])
    clock.advance(1.0)

    usages = sampler.tick([sample(1, 10.0)])

    assert usages[0].cpu_percent == 100.0


def test_new_pid_needs_history(sampler, clock):
    """A pid not seen in the previous tick reports nothing this tick."""
    sampler.tick([sample(1, 1.0)])
    clock.advance(0.5)

    usages = sampler.tick([sample(1, 1.5), sample(2, 3.0)])
    assert [u.pid for u in usages] == [1]

    clock.advance(0.5)
    usages = sampler.tick([sample(1, 1.5), sample(2, 3.5)])
    assert sorted(u.pid for u in usages) == [1, 2]


def test_negative_delta_skipped(sampler, clock):
    """A decreasing CPU time (pid reuse) is ignored for that pid only."""
    sampler.tick([sample(1, 10.0), sample(2, 1.0)])
    clock.advance(1.0)

    usages = sampler.tick([sample(1, 2.0), sample(2, 1.4)])

    assert [u.pid for u in usages] == [2]


def test_exited_process_forgotten(sampler, clock):
    """A pid that disappears and returns is treated as new."""
    sampler.tick([sample(1, 1.0)])
    clock.advance(0.5)
    sampler.tick([])
    clock.advance(0.5)

    assert sampler.tick([sample(1, 2.0)]) == []


def test_zero_interval_rebaselines(sampler):
    """Two ticks at the same instant produce no usage."""
    sampler.tick([sample(1, 1.0)])
    assert sampler.tick([sample(1, 2.0)]) == []


def test_reset_drops_baseline(sampler, clock):
    """After reset() the next tick only records a new baseline."""
    sampler.tick([sample(1, 1.0)])
    sampler.reset()
    clock.advance(1.0)

    assert sampler.tick([sample(1, 2.0)]) == []
    assert sampler.has_baseline


def test_logical_core_count_at_least_one():
    """psutil returning None falls back to one core."""
    with patch("wattshare.sampler.psutil.cpu_count", return_value=None):
        assert get_logical_core_count() == 1
    with patch("wattshare.sampler.psutil.cpu_count", return_value=8):
        assert get_logical_core_count() == 8

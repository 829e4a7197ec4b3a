"""Tests for the foreground monitor wiring."""

import json
from unittest.mock import MagicMock, patch

import pytest
from conftest import T0, make_row, make_snapshot

from wattshare.config import Config, SchedulerConfig
from wattshare.monitor import ConsoleReporter, render_top_apps, run_monitor
from wattshare.session import SessionAggregator


class FakeSystemPower:
    """SystemPowerSource stand-in with fixed readings."""

    def __init__(self):
        self.gpu = MagicMock()
        self.closed = False

    def cpu_package_watts(self):
        return 25.0

    def gpu_package_watts(self):
        return None

    def close(self):
        self.closed = True


@pytest.fixture
def aggregator() -> SessionAggregator:
    agg = SessionAggregator(now=lambda: T0)
    agg.apply_snapshot(make_snapshot(apps=[make_row("editor", 30.0), make_row("shell", 5.0)]))
    return agg


def test_render_top_apps(aggregator):
    table = render_top_apps(aggregator.get_top_apps_by_energy(), limit=1)

    assert table.row_count == 1
    assert [c.header for c in table.columns][0] == "App"


class TestConsoleReporter:
    """Tests for the console observer."""

    def test_prints_new_peaks_once(self, aggregator):
        reporter = ConsoleReporter(aggregator, heartbeat_ticks=100, top_n=10)
        snap = make_snapshot()

        with patch("wattshare.monitor.console") as console:
            reporter(snap)
            reporter(snap)

        kinds = [c.args[0] for c in console.new_peak.call_args_list]
        assert kinds == ["CPU_PEAK", "TOTAL_PEAK"]
        console.heartbeat.assert_not_called()

    def test_heartbeat_every_n_ticks(self, aggregator):
        reporter = ConsoleReporter(aggregator, heartbeat_ticks=2, top_n=10)
        snap = make_snapshot()

        with patch("wattshare.monitor.console") as console:
            for _ in range(4):
                reporter(snap)

        assert console.heartbeat.call_count == 2
        assert console.heartbeat.call_args.kwargs["apps_seen"] == 2
        assert console.print_table.call_count == 2

    def test_heartbeat_also_logged(self, aggregator):
        reporter = ConsoleReporter(aggregator, heartbeat_ticks=1, top_n=10)

        with patch("wattshare.monitor.console"), patch("wattshare.monitor.log") as log:
            reporter(make_snapshot())

        log.info.assert_called_once()
        assert log.info.call_args.args[0] == "monitor_heartbeat"
        assert log.info.call_args.kwargs["apps_seen"] == 2

    def test_peaks_printed_again_after_reset(self):
        aggregator = SessionAggregator(now=lambda: T0)
        reporter = ConsoleReporter(aggregator, heartbeat_ticks=100, top_n=10)

        with patch("wattshare.monitor.console") as console:
            for watts in (10.0, 20.0, 30.0):
                aggregator.apply_snapshot(make_snapshot(cpu_watts=watts))
                reporter(make_snapshot())
            aggregator.reset()
            aggregator.apply_snapshot(make_snapshot(cpu_watts=5.0))
            reporter(make_snapshot())

        kinds = [c.args[0] for c in console.new_peak.call_args_list]
        assert kinds == ["CPU_PEAK", "TOTAL_PEAK"] * 4


@pytest.mark.asyncio
async def test_run_monitor_writes_report(tmp_path):
    """A short run ticks, stops on its own and writes the report."""
    config = Config(scheduler=SchedulerConfig(period_ms=50, heartbeat_ticks=1000))
    report_path = tmp_path / "session.json"
    power = FakeSystemPower()

    with (
        patch("wattshare.monitor.console"),
        patch("wattshare.monitor.SystemPowerSource.from_config", return_value=power),
        patch("wattshare.monitor.detect_hardware_names", return_value=("Test CPU", None)),
    ):
        aggregator = await run_monitor(config, duration=0.4, report_path=report_path)

    assert power.closed
    assert aggregator.get_hardware_names() == ("Test CPU", None)
    assert aggregator.get_dt_stats().count >= 1
    assert aggregator.get_totals().last_cpu_watts == pytest.approx(25.0)

    report = json.loads(report_path.read_text())
    assert report["summary"]["cpu_device_name"] == "Test CPU"
    assert report["summary"]["cpu_w_last"] == pytest.approx(25.0)


@pytest.mark.asyncio
async def test_run_monitor_without_report(tmp_path):
    config = Config(scheduler=SchedulerConfig(period_ms=50))
    power = FakeSystemPower()

    with (
        patch("wattshare.monitor.console") as console,
        patch("wattshare.monitor.SystemPowerSource.from_config", return_value=power),
        patch("wattshare.monitor.detect_hardware_names", return_value=(None, None)),
    ):
        await run_monitor(config, duration=0.1)

    console.report_written.assert_not_called()
    console.monitor_stopped.assert_called_once()
    assert power.closed


@pytest.mark.asyncio
async def test_run_monitor_reports_crash_and_cleans_up():
    config = Config(scheduler=SchedulerConfig(period_ms=50))
    power = FakeSystemPower()

    with (
        patch("wattshare.monitor.console") as console,
        patch("wattshare.monitor.SystemPowerSource.from_config", return_value=power),
        patch("wattshare.monitor.TickScheduler.start", side_effect=RuntimeError("boom")),
    ):
        with pytest.raises(RuntimeError, match="boom"):
            await run_monitor(config, duration=0.1)

    console.error.assert_called_once()
    assert "boom" in console.error.call_args.args[0]
    console.monitor_stopped.assert_called_once()
    assert power.closed

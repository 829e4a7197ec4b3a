"""Tests for session report export."""

import json

import pytest
from conftest import T0, make_row, make_snapshot, ts

from wattshare.report import build_report, write_report
from wattshare.session import SessionAggregator


@pytest.fixture
def session() -> SessionAggregator:
    aggregator = SessionAggregator(now=lambda: T0)
    aggregator.set_hardware_names("Ryzen 7", "RTX 4070")
    for i in range(4):
        aggregator.apply_snapshot(
            make_snapshot(
                dt=0.5,
                cpu_watts=36.0,
                gpu_watts=18.0,
                apps=[make_row("editor", 27.0), make_row("shell", 9.0, pids=(2,))],
                timestamp=ts(0.5 * (i + 1)),
            )
        )
    return aggregator


def test_summary(session):
    summary = build_report(session)["summary"]

    assert summary["cpu_device_name"] == "Ryzen 7"
    assert summary["gpu_device_name"] == "RTX 4070"
    assert summary["session_start_utc"] == T0.isoformat()
    assert summary["session_end_utc"] == ts(2.0).isoformat()
    assert summary["duration_s"] == pytest.approx(2.0)
    assert summary["dt_avg_ms"] == pytest.approx(500.0)
    assert summary["cpu_wh"] == pytest.approx(72.0 / 3600.0)
    assert summary["gpu_wh"] == pytest.approx(36.0 / 3600.0)
    assert summary["total_wh"] == pytest.approx(108.0 / 3600.0)
    assert summary["total_w_last"] == pytest.approx(54.0)
    assert summary["total_w_peak"] == pytest.approx(54.0)
    assert summary["apps_seen_count"] == 2
    assert summary["top_app_by_energy"] == "editor"
    assert summary["top_app_wh"] == pytest.approx(54.0 / 3600.0)
    assert "cost_eur" not in summary


def test_cost_from_price(session):
    summary = build_report(session, price_per_kwh=0.25)["summary"]

    assert summary["price_eur_per_kwh"] == 0.25
    assert summary["cost_eur"] == pytest.approx(108.0 / 3600.0 / 1000.0 * 0.25)


def test_tables(session):
    report = build_report(session, top_n=1)

    assert [a["app_name"] for a in report["apps"]] == ["editor"]
    assert len(report["timeline"]) == 2
    assert report["timeline"][-1]["total_wh_cum"] == pytest.approx(108.0 / 3600.0)
    assert [e["kind"] for e in report["events"]] == ["CPU_PEAK", "GPU_PEAK", "TOTAL_PEAK"]


def test_empty_session():
    summary = build_report(SessionAggregator())["summary"]

    assert summary["top_app_by_energy"] is None
    assert summary["top_app_wh"] == 0.0
    assert summary["dt_min_ms"] == 0.0


def test_write_report(session, tmp_path):
    path = write_report(tmp_path / "out" / "session.json", build_report(session))

    data = json.loads(path.read_text())
    assert set(data) == {"summary", "apps", "timeline", "events"}
    assert data["summary"]["top_app_by_energy"] == "editor"

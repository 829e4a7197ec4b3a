"""Session report export.

A report is a plain dict built from one read of each aggregator query, so it
reflects a consistent-enough view of the session at export time. write_report
serializes it as JSON with four sections: summary, apps, timeline, events.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from wattshare.session import SessionAggregator


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


def build_report(
    aggregator: SessionAggregator,
    top_n: int = 200,
    price_per_kwh: float | None = None,
) -> dict[str, Any]:
    """Collect the current session into a report dict.

    Args:
        aggregator: Session to export
        top_n: Maximum number of application rows
        price_per_kwh: Optional energy price (EUR/kWh) for the cost field
    """
    cpu_name, gpu_name = aggregator.get_hardware_names()
    totals = aggregator.get_totals()
    bounds = aggregator.get_session_bounds()
    dt = aggregator.get_dt_stats()
    peaks = aggregator.get_peaks()
    apps = aggregator.get_top_apps_by_energy(top_n)
    timeline = aggregator.get_timeline_total()
    events = aggregator.get_events()

    top_app = apps[0] if apps else None
    summary: dict[str, Any] = {
        "cpu_device_name": cpu_name,
        "gpu_device_name": gpu_name,
        "session_start_utc": _iso(bounds.start_utc),
        "session_end_utc": _iso(bounds.end_utc),
        "duration_s": round(totals.session_seconds, 3),
        "dt_min_ms": round(dt.min_seconds * 1000, 3),
        "dt_avg_ms": round(dt.avg_seconds * 1000, 3),
        "dt_max_ms": round(dt.max_seconds * 1000, 3),
        "cpu_wh": totals.total_cpu_wh,
        "gpu_wh": totals.total_gpu_wh,
        "total_wh": totals.total_wh,
        "cpu_w_last": totals.last_cpu_watts,
        "gpu_w_last": totals.last_gpu_watts,
        "total_w_last": totals.last_cpu_watts + totals.last_gpu_watts,
        "cpu_w_peak": peaks.cpu_peak_watts,
        "gpu_w_peak": peaks.gpu_peak_watts,
        "total_w_peak": peaks.total_peak_watts,
        "apps_seen_count": len(apps),
        "top_app_by_energy": top_app.app_name if top_app else None,
        "top_app_wh": top_app.total_wh if top_app else 0.0,
    }
    if price_per_kwh is not None:
        summary["price_eur_per_kwh"] = price_per_kwh
        summary["cost_eur"] = totals.total_wh / 1000.0 * price_per_kwh

    return {
        "summary": summary,
        "apps": [
            {
                "app_name": a.app_name,
                "total_wh": a.total_wh,
                "total_joules": a.total_joules,
                "last_cpu_percent": a.last_cpu_percent,
                "last_allocated_watts": a.last_allocated_watts,
                "max_watts": a.max_watts,
                "process_count": a.process_count,
                "last_seen_process_count": a.last_seen_process_count,
            }
            for a in apps
        ],
        "timeline": [
            {
                "timestamp_utc": _iso(p.timestamp_utc),
                "t_s": p.t_seconds,
                "dt_s": p.dt_seconds,
                "cpu_w_avg": p.cpu_watts_avg,
                "gpu_w_avg": p.gpu_watts_avg,
                "total_w_avg": p.total_watts_avg,
                "cpu_wh_cum": p.cpu_wh_cumulative,
                "gpu_wh_cum": p.gpu_wh_cumulative,
                "total_wh_cum": p.total_wh_cumulative,
            }
            for p in timeline
        ],
        "events": [
            {
                "timestamp_utc": _iso(e.timestamp_utc),
                "t_s": e.t_seconds,
                "kind": e.kind.value,
                "app_name": e.app_name,
                "value_w": e.value_watts,
                "notes": e.notes,
            }
            for e in events
        ],
    }


def write_report(path: Path, report: dict[str, Any]) -> Path:
    """Write a report as indented JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
    return path

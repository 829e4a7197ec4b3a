"""Unit conversion and formatting utilities for consistent CLI output."""

from enum import Enum

JOULES_PER_WH = 3600.0


class EnergyUnit(str, Enum):
    """Display unit for energy values."""

    WH = "Wh"
    J = "J"


def joules_to_wh(joules: float) -> float:
    """Convert joules to watt-hours."""
    return joules / JOULES_PER_WH


def wh_to_joules(wh: float) -> float:
    """Convert watt-hours to joules."""
    return wh * JOULES_PER_WH


def format_watts(watts: float | None) -> str:
    """Format a power reading for tables.

    Returns:
        "12.3 W", or "-" when no reading is available
    """
    if watts is None:
        return "-"
    return f"{watts:.1f} W"


def format_energy(joules: float, unit: EnergyUnit = EnergyUnit.WH) -> str:
    """Format an energy amount in the requested unit.

    Watt-hours below 1 Wh are shown as mWh to stay readable on short sessions.
    """
    if unit is EnergyUnit.J:
        return f"{joules:.1f} J"
    wh = joules_to_wh(joules)
    if abs(wh) < 1.0:
        return f"{wh * 1000:.1f} mWh"
    return f"{wh:.3f} Wh"


def format_session_duration(seconds: float) -> str:
    """Format session length (compact).

    Returns:
        "42.0s" under a minute, "3m 05s" under an hour, "1h 02m" otherwise
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    return f"{minutes}m {secs:02d}s"


def format_ms(seconds: float) -> str:
    """Format a tick interval in milliseconds."""
    return f"{seconds * 1000:.1f} ms"

"""Tests for formatting utilities."""

import pytest

from wattshare.formatting import (
    EnergyUnit,
    format_energy,
    format_ms,
    format_session_duration,
    format_watts,
    joules_to_wh,
    wh_to_joules,
)


def test_joules_wh_conversion():
    assert joules_to_wh(3600.0) == pytest.approx(1.0)
    assert wh_to_joules(0.5) == pytest.approx(1800.0)


def test_format_watts():
    assert format_watts(12.345) == "12.3 W"
    assert format_watts(None) == "-"


class TestFormatEnergy:
    """Tests for format_energy()."""

    def test_small_energy_in_mwh(self):
        assert format_energy(36.0) == "10.0 mWh"

    def test_large_energy_in_wh(self):
        assert format_energy(7200.0) == "2.000 Wh"

    def test_joules(self):
        assert format_energy(36.04, EnergyUnit.J) == "36.0 J"


class TestFormatSessionDuration:
    """Tests for format_session_duration()."""

    def test_seconds(self):
        assert format_session_duration(42.04) == "42.0s"

    def test_minutes(self):
        assert format_session_duration(185) == "3m 05s"

    def test_hours(self):
        assert format_session_duration(3725) == "1h 02m"


def test_format_ms():
    assert format_ms(0.5012) == "501.2 ms"

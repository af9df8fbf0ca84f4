"""
Tests for the Peak Governor.

Run with: pytest tests/test_governor.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from outreach_sync.core.config import Settings
from outreach_sync.sync.governor import PeakGovernor


def at(hour, minute=0):
    return datetime(2024, 6, 4, hour, minute, tzinfo=timezone.utc)


class TestPeakWindow:

    @pytest.mark.parametrize("hour,minute,expected", [
        (8, 59, False),
        (9, 0, True),
        (12, 30, True),
        (16, 59, True),
        (17, 0, False),
        (23, 0, False),
        (0, 0, False),
    ])
    def test_default_window(self, hour, minute, expected):
        governor = PeakGovernor(timezone_name="UTC")
        assert governor.is_peak(at(hour, minute)) is expected

    def test_deferral_is_exactly_eight_hours(self):
        governor = PeakGovernor(timezone_name="UTC")
        now = at(10, 17)
        assert governor.deferred_until(now) - now == timedelta(hours=8)

    def test_disabled_gate_never_blocks(self):
        governor = PeakGovernor(timezone_name="UTC", enabled=False)
        assert not governor.is_peak(at(12))

    def test_window_wrapping_midnight(self):
        governor = PeakGovernor(start_hour=22, end_hour=6, timezone_name="UTC")
        assert governor.is_peak(at(23))
        assert governor.is_peak(at(2))
        assert not governor.is_peak(at(6))
        assert not governor.is_peak(at(12))

    def test_timezone_is_applied(self):
        # 08:00 UTC is 10:00 in Berlin during summer time
        berlin = PeakGovernor(timezone_name="Europe/Berlin")
        utc = PeakGovernor(timezone_name="UTC")
        assert berlin.is_peak(at(8))
        assert not utc.is_peak(at(8))

    def test_uses_clock_when_no_time_given(self):
        governor = PeakGovernor(timezone_name="UTC", clock=lambda: at(11))
        assert governor.is_peak()
        assert governor.deferred_until() == at(19)


class TestFromSettings:

    def test_reads_window_from_settings(self):
        settings = Settings(
            peak_start_hour=8,
            peak_end_hour=18,
            peak_deferral_hours=4,
            peak_timezone="UTC",
            peak_gating_enabled=True,
        )
        governor = PeakGovernor.from_settings(settings)

        assert governor.is_peak(at(8))
        assert governor.is_peak(at(17, 30))
        assert governor.deferred_until(at(8)) == at(12)

    @pytest.mark.parametrize("fields", [
        {"peak_start_hour": 24},
        {"peak_start_hour": -1},
        {"peak_end_hour": 25},
        {"peak_deferral_hours": 0},
    ])
    def test_rejects_out_of_range_hours(self, fields):
        with pytest.raises(ValidationError):
            Settings(**fields)

    def test_end_of_day_is_allowed(self):
        settings = Settings(peak_start_hour=18, peak_end_hour=24, peak_timezone="UTC")

        assert PeakGovernor.from_settings(settings).is_peak(at(23, 30))

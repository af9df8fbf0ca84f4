"""
Peak Governor: keeps autonomous cycles out of peak working hours.

Manual triggers never consult the governor.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from ..db.models import utcnow

logger = logging.getLogger(__name__)


class PeakGovernor:
    """
    Time-of-day gate for autonomous cycles.

    The peak window is ``[start_hour, end_hour)`` in local wall-clock hours.
    A window with ``start_hour > end_hour`` wraps past midnight.
    """

    def __init__(
        self,
        start_hour: int = 9,
        end_hour: int = 17,
        deferral_hours: int = 8,
        timezone_name: Optional[str] = None,
        enabled: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.deferral = timedelta(hours=deferral_hours)
        self.zone = ZoneInfo(timezone_name) if timezone_name else None
        self.enabled = enabled
        self.clock = clock

    @classmethod
    def from_settings(cls, settings) -> "PeakGovernor":
        return cls(
            start_hour=settings.peak_start_hour,
            end_hour=settings.peak_end_hour,
            deferral_hours=settings.peak_deferral_hours,
            timezone_name=settings.peak_timezone,
            enabled=settings.peak_gating_enabled,
        )

    def local_hour(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        # No zone configured: system local time
        return now.astimezone(self.zone).hour

    def is_peak(self, now: Optional[datetime] = None) -> bool:
        """True if an autonomous cycle must not run at ``now``."""
        if not self.enabled:
            return False
        hour = self.local_hour(now)
        if self.start_hour <= self.end_hour:
            return self.start_hour <= hour < self.end_hour
        return hour >= self.start_hour or hour < self.end_hour

    def deferred_until(self, now: Optional[datetime] = None) -> datetime:
        """When a denied attempt should be retried."""
        return (now or self.clock()) + self.deferral

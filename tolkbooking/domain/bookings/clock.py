"""
Clock / calendar port
Resolves "now", the quiet-hour window, booking expiry deadlines and session durations
"""

import re
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from ... import config
from .errors import ValidationError

_SESSION_TIME_RE = re.compile(r"^\s*(\d{1,3}):([0-5]?\d)(?::([0-5]?\d))?\s*$")


class Clock:
    """
    System clock in the booking timezone.

    Timestamps are naive local datetimes (the database stores them that way).
    The night window wraps midnight when night_start_hour > night_end_hour.
    """

    def __init__(
        self,
        timezone: str = config.TIMEZONE,
        night_start_hour: int = config.NIGHT_START_HOUR,
        night_end_hour: int = config.NIGHT_END_HOUR,
    ):
        if not (0 <= night_start_hour <= 23 and 0 <= night_end_hour <= 23):
            raise ValueError("Night window hours must be within 0-23")
        self.tz = ZoneInfo(timezone)
        self.night_start_hour = night_start_hour
        self.night_end_hour = night_end_hour

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None, microsecond=0)

    def is_night_time(self, at: Optional[datetime] = None) -> bool:
        hour = (at or self.now()).hour
        if self.night_start_hour == self.night_end_hour:
            return False
        if self.night_start_hour > self.night_end_hour:
            return hour >= self.night_start_hour or hour < self.night_end_hour
        return self.night_start_hour <= hour < self.night_end_hour

    def next_business_time(self, at: Optional[datetime] = None) -> datetime:
        """First moment after the night window that contains `at` (or `at` itself by day)"""
        moment = at or self.now()
        if not self.is_night_time(moment):
            return moment
        candidate = moment.replace(hour=self.night_end_hour, minute=0, second=0, microsecond=0)
        if candidate <= moment:
            candidate += timedelta(days=1)
        return candidate


def will_expire_at(due: datetime, created_at: datetime) -> datetime:
    """
    Deadline after which an unaccepted booking times out.

    Short-notice bookings stay open until due; the further out the booking, the
    earlier the deadline relative to the due time.
    """
    lead = due - created_at
    if lead <= timedelta(minutes=90):
        return due
    if lead <= timedelta(hours=24):
        return created_at + timedelta(minutes=90)
    if lead <= timedelta(hours=72):
        return created_at + timedelta(hours=16)
    return due - timedelta(hours=48)


def parse_session_time(value: Optional[str]) -> timedelta:
    """Parse an "H:MM" or "H:MM:SS" interval; raises ValidationError when unparseable"""
    if not value:
        raise ValidationError("session_time is required to complete a job")
    match = _SESSION_TIME_RE.match(str(value))
    if not match:
        raise ValidationError(f"Invalid session_time '{value}', expected H:MM:SS")
    hours, minutes, seconds = (int(part) if part else 0 for part in match.groups())
    return timedelta(hours=hours, minutes=minutes, seconds=seconds)


def format_interval(interval: timedelta) -> str:
    """timedelta → "H:MM:SS" as stored on the job"""
    total = max(int(interval.total_seconds()), 0)
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}"


def format_session_time(interval: timedelta) -> str:
    """timedelta → "1 tim 30 min" as shown to customers and translators"""
    total = max(int(interval.total_seconds()), 0)
    hours, remainder = divmod(total, 3600)
    return f"{hours} tim {remainder // 60} min"


def convert_to_hours_mins(minutes: int, fmt: str = "{:02d}h {:02d}min") -> str:
    """Render a duration in minutes the way SMS texts show it"""
    if minutes < 60:
        return f"{minutes}min"
    if minutes == 60:
        return "1h"
    return fmt.format(minutes // 60, minutes % 60)

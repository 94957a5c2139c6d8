"""출근 시간대 규칙을 정의하는 순수 함수 모음입니다. I/O를 수행하지 않으며 예외를 던지지 않습니다."""

from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from checkin_app.config import settings

AUTO_CHECKIN_CUTOFF_HOUR = 10
DAY_CLOSE_HOUR = 19
STANDARD_WORK_HOURS = 8
LUNCH_BREAK_HOURS = 1
LUNCH_CUTOFF_HOUR = 12


def office_now() -> datetime:
    return datetime.now(ZoneInfo(settings.OFFICE_TIMEZONE))


def can_auto_check_in(now: datetime) -> bool:
    """One-click check-in uses ``now`` itself and is only open before the cutoff."""
    return now.hour < AUTO_CHECKIN_CUTOFF_HOUR


def can_check_in(candidate: datetime) -> bool:
    return candidate.hour < DAY_CLOSE_HOUR


def estimated_end_time(start: datetime) -> datetime:
    """Shift end for a given start.

    Starting before noon bakes a lunch break into the shift. Only the hour is
    compared, so 11:59 still gets the break and 12:00 does not.
    """
    end = start + timedelta(hours=STANDARD_WORK_HOURS)
    if start.hour < LUNCH_CUTOFF_HOUR:
        end += timedelta(hours=LUNCH_BREAK_HOURS)
    return end


def progress_percent(now: datetime, start: Optional[datetime], end: Optional[datetime]) -> float:
    if start is None or end is None:
        return 0.0
    total = (end - start).total_seconds()
    if total <= 0:
        return 100.0 if now >= end else 0.0
    elapsed = (now - start).total_seconds()
    return min(100.0, max(0.0, elapsed / total * 100))

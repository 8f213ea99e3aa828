from datetime import datetime, timedelta, timezone

from pickforge import config

MAX_WEEK = 22


def parse_iso(value) -> datetime | None:
    """Parse an ISO-8601 instant (trailing 'Z' allowed). Naive values are UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def season_start(raw: str | None = None) -> datetime:
    return datetime.strptime(raw or config.NFL_SEASON_START_TUE, "%Y-%m-%d").replace(tzinfo=timezone.utc)


def nfl_week_number(dt: datetime, start: datetime | None = None) -> int:
    """Week 1 starts on the season's opening Tuesday; clamped to [1, 22]."""
    start = start or season_start()
    weeks = (dt - start) // timedelta(days=7) + 1
    return max(1, min(MAX_WEEK, weeks))


def week_window(now: datetime) -> tuple[datetime, datetime]:
    """Tuesday 00:00 -> next Tuesday 00:00 window containing `now`."""
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    days_since_tue = (today.weekday() - 1) % 7  # Monday == 0
    week_start = today - timedelta(days=days_since_tue)
    return week_start, week_start + timedelta(days=7)

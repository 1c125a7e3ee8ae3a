from datetime import datetime, timezone
from zoneinfo import ZoneInfo
from .config import settings

RESULT_TIME_FORMAT = "%Y-%m-%d_%H:%M:%S"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_local() -> datetime:
    return now_utc().astimezone(ZoneInfo(settings.timezone))


def format_result_time(dt: datetime) -> str:
    return dt.strftime(RESULT_TIME_FORMAT)

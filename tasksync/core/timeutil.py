"""日時ユーティリティ

内部の時刻はすべてUTCのaware datetimeに正規化する。
naiveなdatetimeはUTCとみなす。VTODOの浮動時刻・日付のみの値だけは
設定タイムゾーン（settings.TIMEZONE）のローカル時刻として解釈する。
"""
import re
from datetime import datetime, timedelta
from typing import Any, Optional, Union
import pytz
from tasksync.core.config import settings

ICAL_DATETIME = re.compile(r"^(\d{4})(\d{2})(\d{2})(?:T(\d{2})(\d{2})(\d{2})?(Z)?)?$")


def local_tz():
    return pytz.timezone(settings.TIMEZONE)


def utcnow() -> datetime:
    return datetime.now(pytz.utc)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)


def to_epoch_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(to_utc(value).timestamp() * 1000)


def from_epoch_ms(value: Optional[Union[int, float]]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=pytz.utc)


def parse_ical_datetime(value: Any, tz=None) -> Optional[datetime]:
    """iCalendarの日時をUTCに変換

    20231225 → ローカル23:59:59、20231225T120000 → ローカル、20231225T120000Z → UTC
    """
    if value is None:
        return None
    match = ICAL_DATETIME.match(str(value).strip())
    if not match:
        return None
    year, month, day, hour, minute, second, utc = match.groups()
    try:
        if hour is None:
            naive = datetime(int(year), int(month), int(day), 23, 59, 59)
        else:
            naive = datetime(int(year), int(month), int(day), int(hour), int(minute), int(second or 0))
    except ValueError:
        return None
    if utc:
        return pytz.utc.localize(naive)
    return (tz or local_tz()).localize(naive).astimezone(pytz.utc)


def format_ical_utc(value: datetime) -> str:
    return to_utc(value).strftime("%Y%m%dT%H%M%SZ")


def parse_instant(value: Any) -> Optional[datetime]:
    """datetime・エポックミリ秒・ISO 8601・iCalendar形式のいずれかを受け付ける"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, (int, float)):
        return from_epoch_ms(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if ICAL_DATETIME.match(text):
            return parse_ical_datetime(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def floor_minutes(delta: timedelta) -> int:
    """差分を分単位に切り捨て（負方向も床関数）"""
    return int(delta.total_seconds() // 60)

"""VTODO（プロキシがパースした辞書形式）の読み書きヘルパー"""
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import pytz
from tasksync.core.timeutil import format_ical_utc
from tasksync.models.task import AbsoluteAlarm, Alarm, RelativeAlarm

logger = logging.getLogger(__name__)

_RELATIVE_TRIGGER = re.compile(r"^([+-])?P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$")
_ABSOLUTE_TRIGGER = re.compile(r"^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})Z?$")


def get_property(component: Dict[str, Any], name: str) -> Any:
    """"DUE;VALUE=DATE" のようなパラメータ付きのキーも含めて値を取得"""
    if name in component:
        return component[name]
    for key, value in component.items():
        if key.startswith(name + ";"):
            return value
    return None


def remove_property(component: Dict[str, Any], name: str) -> None:
    for key in list(component):
        if key == name or key.startswith(name + ";"):
            del component[key]


def parse_geo(value: Any) -> Optional[Tuple[float, float]]:
    """GEO "lat;lon" を (lat, lon) に変換"""
    if not value:
        return None
    parts = str(value).split(";")
    if len(parts) != 2:
        return None
    try:
        return float(parts[0]), float(parts[1])
    except ValueError:
        logger.debug(f"Failed to parse GEO: {value}")
        return None


def parse_categories(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, list):
        return [str(c).strip() for c in value if str(c).strip()]
    return [c.strip() for c in str(value).split(",") if c.strip()]


def _alarms(valarm: Any) -> List[Dict[str, Any]]:
    if not valarm:
        return []
    if isinstance(valarm, list):
        return [a for a in valarm if isinstance(a, dict)]
    if isinstance(valarm, dict):
        return [valarm]
    return []


def _trigger(alarm: Dict[str, Any]) -> Optional[str]:
    trigger = get_property(alarm, "TRIGGER")
    if isinstance(trigger, dict):
        trigger = trigger.get("value")
    return str(trigger).strip() if trigger else None


def parse_alarm(valarm: Any) -> Optional[Alarm]:
    """最初のVALARMからリマインダー記述子を作る

    期間形式は -PT15M なら期日の15分前、PT15M・+PT15M なら15分後（負の分）、
    日時形式は絶対時刻として扱う。
    """
    alarms = _alarms(valarm)
    if not alarms:
        return None
    trigger = _trigger(alarms[0])
    if not trigger:
        return None

    match = _RELATIVE_TRIGGER.match(trigger)
    if match:
        sign = match.group(1)
        days, hours, minutes, _ = (int(g or 0) for g in match.groups()[1:])
        total = days * 24 * 60 + hours * 60 + minutes
        return RelativeAlarm(total if sign == "-" else -total)

    match = _ABSOLUTE_TRIGGER.match(trigger)
    if match:
        year, month, day, hour, minute, second = (int(g) for g in match.groups())
        return AbsoluteAlarm(datetime(year, month, day, hour, minute, second, tzinfo=pytz.utc))

    logger.debug(f"Unknown TRIGGER format: {trigger}")
    return None


def valarm_triggers(valarm: Any) -> List[Dict[str, str]]:
    """期間形式のTRIGGERをすべて {"trigger": ...} の一覧にする"""
    entries = []
    for alarm in _alarms(valarm):
        trigger = _trigger(alarm)
        if trigger and trigger.lstrip("-+").startswith("P"):
            entries.append({"trigger": trigger})
    return entries


def build_relative_trigger(minutes: int) -> str:
    """分を "-P1DT2H30M" 形式に変換（0分は "-PT0M"、負の分は期日後の "PT10M"）"""
    days, rest = divmod(abs(minutes), 24 * 60)
    hours, mins = divmod(rest, 60)
    trigger = "P" if minutes < 0 else "-P"
    if days:
        trigger += f"{days}D"
    if hours or mins or not days:
        trigger += "T"
        if hours:
            trigger += f"{hours}H"
        if mins or (not hours and not days):
            trigger += f"{mins}M"
    return trigger


def relative_valarm(minutes: int, title: str) -> Dict[str, Any]:
    # RELATED=END でDUE基準のアラームにする
    return {
        "ACTION": "DISPLAY",
        "TRIGGER;RELATED=END": build_relative_trigger(minutes),
        "DESCRIPTION": title or "Task reminder",
    }


def absolute_valarm(date: datetime, title: str) -> Dict[str, Any]:
    return {
        "ACTION": "DISPLAY",
        "TRIGGER;VALUE=DATE-TIME": format_ical_utc(date),
        "DESCRIPTION": title or "Task reminder",
    }

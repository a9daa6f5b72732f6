"""VALARMパーサー

CalDAVのVALARM TRIGGER（RFC 5545の期間形式）とタスクのリマインダー設定から
アプリ内リマインダー用の絶対発火時刻を計算する。

  -PT15M   → 15分前
  -PT1H30M → 1時間30分前
  -P1D     → 1日前
  PT10M    → 10分後（符号なしは期日の後）

入力はTaskオブジェクトでも辞書でもよい（due_date / dueDate / due を順に参照）。
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Any, List, Optional
from tasksync.core.timeutil import floor_minutes, parse_instant
from tasksync.models.task import AbsoluteAlarm, RelativeAlarm, coerce_alarm

logger = logging.getLogger(__name__)

DURATION = re.compile(r"^([+-])?P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


def task_field(task: Any, *names: str) -> Any:
    """Taskオブジェクト・辞書のどちらからでも最初に見つかった値を取得"""
    for name in names:
        if isinstance(task, dict):
            value = task.get(name)
        else:
            value = getattr(task, name, None)
        if value is not None:
            return value
    return None


def _due_date(task: Any) -> Optional[datetime]:
    return parse_instant(task_field(task, "due_date", "dueDate", "due"))


def _trigger_of(entry: Any) -> Optional[str]:
    if isinstance(entry, dict):
        return entry.get("trigger")
    if isinstance(entry, str):
        return entry
    return getattr(entry, "trigger", None)


def parse_duration(trigger: str) -> Optional[int]:
    """期間文字列を符号付きの分に変換（秒は分に切り捨て）"""
    if not trigger:
        return None
    match = DURATION.match(trigger.strip())
    if not match:
        return None
    sign, days, hours, minutes, seconds = match.groups()
    if not any((days, hours, minutes, seconds)):
        return None
    total = int(days or 0) * 24 * 60 + int(hours or 0) * 60 + int(minutes or 0) + int(seconds or 0) // 60
    return -total if sign == "-" else total


def parse_valarm(task: Any) -> List[int]:
    """valarm配列から発火オフセット（分）の一覧を取得"""
    offsets: List[int] = []
    for entry in task_field(task, "valarm") or []:
        trigger = _trigger_of(entry)
        if not trigger:
            logger.debug("VALARM missing trigger property")
            continue
        offset = parse_duration(trigger)
        if offset is None:
            logger.warning(f"Failed to parse VALARM trigger: {trigger}")
            continue
        logger.debug(f"Parsed VALARM trigger: {trigger} -> {offset} minutes")
        offsets.append(offset)
    return offsets


def _alarm_offsets(task: Any, due: datetime) -> List[int]:
    alarm = coerce_alarm(task_field(task, "alarm"))
    if isinstance(alarm, RelativeAlarm):
        return [-alarm.minutes]
    if isinstance(alarm, AbsoluteAlarm):
        return [floor_minutes(alarm.date - due)]
    return []


def calculate_trigger_times(task: Any) -> List[datetime]:
    """期日とVALARM（無ければalarm）から発火時刻（UTC）を計算"""
    due = _due_date(task)
    if due is None:
        logger.debug("Task has no usable due date, cannot calculate trigger times")
        return []

    offsets = parse_valarm(task)
    if not offsets:
        offsets = _alarm_offsets(task, due)

    if not offsets:
        logger.debug("No valid alarm triggers found")
        return []

    return [due + timedelta(minutes=offset) for offset in offsets]


def has_valid_valarm(task: Any) -> bool:
    """期日があり、valarmかalarmのどちらかが設定されているか"""
    if _due_date(task) is None:
        return False
    if task_field(task, "valarm"):
        return True
    return coerce_alarm(task_field(task, "alarm")) is not None


def format_trigger_offset(offset_minutes: int) -> str:
    """オフセットを表示用文字列に変換"""
    minutes = abs(offset_minutes)
    direction = "before" if offset_minutes < 0 else "after"

    if minutes == 0:
        return "At due time"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} {direction}"
    if minutes < 1440:
        hours, rest = divmod(minutes, 60)
        if rest == 0:
            return f"{hours} hour{'s' if hours != 1 else ''} {direction}"
        return f"{hours}h {rest}m {direction}"
    days, rest = divmod(minutes, 1440)
    if rest == 0:
        return f"{days} day{'s' if days != 1 else ''} {direction}"
    return f"{days}d {rest // 60}h {direction}"

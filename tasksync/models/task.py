"""Taskモデル"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union
from tasksync.core.errors import UnsupportedTaskOperation
from tasksync.core.timeutil import local_tz, parse_instant, utcnow

logger = logging.getLogger(__name__)


class TaskStatus(str, enum.Enum):
    """タスクステータス（VTODO STATUS）"""
    NEEDS_ACTION = "NEEDS-ACTION"
    IN_PROCESS = "IN-PROCESS"
    COMPLETED = "COMPLETED"

    @classmethod
    def coerce(cls, value) -> "TaskStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.NEEDS_ACTION

    def next(self) -> "TaskStatus":
        """NEEDS-ACTION → IN-PROCESS → COMPLETED → NEEDS-ACTION"""
        return _STATUS_CYCLE[self]


_STATUS_CYCLE = {
    TaskStatus.NEEDS_ACTION: TaskStatus.IN_PROCESS,
    TaskStatus.IN_PROCESS: TaskStatus.COMPLETED,
    TaskStatus.COMPLETED: TaskStatus.NEEDS_ACTION,
}


class TaskKind(str, enum.Enum):
    """タスクの取得元"""
    REMOTE = "remote"
    LOCAL = "local"
    CACHED = "cached"


class TaskCapability(str, enum.Enum):
    """タスク種別ごとに宣言する操作"""
    EDIT_TITLE = "edit_title"
    EDIT_DESCRIPTION = "edit_description"
    EDIT_STATUS = "edit_status"
    EDIT_PRIORITY = "edit_priority"
    EDIT_CATEGORIES = "edit_categories"
    EDIT_START_DATE = "edit_start_date"
    EDIT_DUE_DATE = "edit_due_date"
    EDIT_ALARM = "edit_alarm"
    EDIT_LOCATION = "edit_location"
    DELETE = "delete"
    SYNC = "sync"


EDIT_CAPABILITIES: FrozenSet[TaskCapability] = frozenset(c for c in TaskCapability if c.value.startswith("edit_"))


@dataclass(frozen=True)
class RelativeAlarm:
    """期日のN分前に通知（負の値は期日の後）"""
    minutes: int

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "relative", "minutes": self.minutes}


@dataclass(frozen=True)
class AbsoluteAlarm:
    """指定時刻に通知"""
    date: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "absolute", "date": self.date.isoformat()}


Alarm = Union[RelativeAlarm, AbsoluteAlarm]


def coerce_alarm(value: Any) -> Optional[Alarm]:
    """リマインダー記述子を正規化

    {type: relative, minutes} / {type: absolute, date} の辞書形式に加え、
    旧形式（数値=相対分、datetime・文字列=絶対時刻）も受け付ける。不正な値はNone。
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (RelativeAlarm, AbsoluteAlarm)):
        return value
    if isinstance(value, dict):
        kind = value.get("type")
        if kind == "relative":
            minutes = value.get("minutes")
            if isinstance(minutes, (int, float)) and not isinstance(minutes, bool):
                return RelativeAlarm(int(minutes))
        elif kind == "absolute" and value.get("date"):
            date = parse_instant(value["date"])
            if date is not None:
                return AbsoluteAlarm(date)
        return None
    if isinstance(value, (int, float)):
        return RelativeAlarm(int(value))
    if isinstance(value, (datetime, str)):
        date = parse_instant(value)
        if date is not None:
            return AbsoluteAlarm(date)
    return None


def clamp_priority(value: Any) -> int:
    try:
        priority = int(value)
    except (TypeError, ValueError):
        return 0
    return max(0, min(9, priority))


def normalize_categories(categories: Optional[Iterable[str]]) -> List[str]:
    """順序を保ったまま重複と空文字を除去"""
    result: List[str] = []
    for category in categories or []:
        name = str(category).strip()
        if name and name not in result:
            result.append(name)
    return result


class Task:
    """タスク基底クラス

    実体はRemoteTask / LocalTask / CachedTaskのいずれか。
    呼び出し側は capabilities（supports()）で可能な操作を判定する。
    subtasks はツリー組み立て時に毎回作り直される派生ビュー。
    """

    kind: TaskKind
    capabilities: FrozenSet[TaskCapability] = frozenset()

    def __init__(
        self,
        id: str,
        uid: Optional[str] = None,
        title: str = "",
        description: str = "",
        status: Union[TaskStatus, str] = TaskStatus.NEEDS_ACTION,
        priority: int = 0,
        categories: Optional[Iterable[str]] = None,
        start_date: Optional[datetime] = None,
        due_date: Optional[datetime] = None,
        geo: Optional[Tuple[float, float]] = None,
        location: str = "",
        alarm: Any = None,
        valarm: Optional[List[Dict[str, str]]] = None,
        parent_id: Optional[str] = None,
        on_reminder_change: Optional[Callable[["Task"], Any]] = None,
    ):
        self.id = id
        self.uid = uid
        self.title = title or ""
        self.description = description or ""
        self.status = TaskStatus.coerce(status)
        self.priority = clamp_priority(priority)
        self.categories = normalize_categories(categories)
        self.start_date = start_date
        self.due_date = due_date
        self.geo = tuple(geo) if geo else None
        self.location = location or ""
        self.alarm = coerce_alarm(alarm)
        self.valarm = list(valarm or [])
        self.parent_id = parent_id
        self.subtasks: List["Task"] = []
        self._on_reminder_change = on_reminder_change

    def __repr__(self):
        return f"<{type(self).__name__} id={self.id!r} uid={self.uid!r} title={self.title!r}>"

    @property
    def completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def in_progress(self) -> bool:
        return self.status == TaskStatus.IN_PROCESS

    def supports(self, capability: TaskCapability) -> bool:
        return capability in self.capabilities

    @property
    def priority_level(self) -> str:
        """0=none, 1-4=high, 5=medium, 6-9=low"""
        if 1 <= self.priority <= 4:
            return "high"
        if self.priority == 5:
            return "medium"
        if 6 <= self.priority <= 9:
            return "low"
        return "none"

    def reminder_countdown(self, now: Optional[datetime] = None) -> Optional[str]:
        """期日までの残り時間（"3.5h", "2d", 期限切れは負値）"""
        if self.due_date is None:
            return None
        hours = (self.due_date - (now or utcnow())).total_seconds() / 3600
        if abs(hours) < 24:
            return f"{hours:.1f}h"
        return f"{round(hours / 24)}d"

    def format_alarm(self, now: Optional[datetime] = None) -> Optional[str]:
        """リマインダー表示用の文字列"""
        if isinstance(self.alarm, RelativeAlarm):
            minutes = abs(self.alarm.minutes)
            direction = "after" if self.alarm.minutes < 0 else "before"
            if minutes == 0:
                return "At time"
            if minutes < 60:
                return f"{minutes} min {direction}"
            if minutes < 24 * 60:
                hours = minutes / 60
                return f"1 hour {direction}" if hours == 1 else f"{hours:g} hours {direction}"
            days = minutes / (24 * 60)
            return f"1 day {direction}" if days == 1 else f"{days:g} days {direction}"
        if isinstance(self.alarm, AbsoluteAlarm):
            diff = (self.alarm.date - (now or utcnow())).total_seconds()
            if diff < 0:
                return "Passed"
            hours = diff / 3600
            if hours < 1:
                return f"In {round(diff / 60)} min"
            if hours < 24:
                return f"In {hours:.1f}h"
            return self.alarm.date.astimezone(local_tz()).strftime("%m/%d %H:%M")
        return None

    def _notify_reminder_change(self) -> None:
        """期日・リマインダー変更後にアプリ内アラームを再スケジュール"""
        if self._on_reminder_change is None:
            return
        try:
            self._on_reminder_change(self)
        except Exception as e:
            # 更新自体は成功しているので、再スケジュール失敗はログのみ
            logger.error(f"Failed to reschedule alarms for task {self.uid}: {e}", exc_info=True)

    def _unsupported(self, operation: str) -> UnsupportedTaskOperation:
        return UnsupportedTaskOperation(f"{self.kind.value} task does not support {operation}")

    # 以下はサポートする種別でオーバーライドする

    def set_title(self, title: str):
        raise self._unsupported("set_title")

    def set_description(self, description: str):
        raise self._unsupported("set_description")

    def set_status(self, status: Union[TaskStatus, str]):
        raise self._unsupported("set_status")

    def set_completed(self, completed: bool):
        return self.set_status(TaskStatus.COMPLETED if completed else TaskStatus.NEEDS_ACTION)

    def cycle_status(self):
        return self.set_status(self.status.next())

    def set_priority(self, priority: int):
        raise self._unsupported("set_priority")

    def set_categories(self, categories: Iterable[str]):
        raise self._unsupported("set_categories")

    def set_start_date(self, date: Optional[datetime]):
        raise self._unsupported("set_start_date")

    def set_due_date(self, date: Optional[datetime]):
        raise self._unsupported("set_due_date")

    def set_due_date_with_alarm(self, date: datetime, alarm_minutes: int = 0):
        raise self._unsupported("set_due_date_with_alarm")

    def set_alarm(self, minutes: Optional[int]):
        raise self._unsupported("set_alarm")

    def set_alarm_absolute(self, date: Optional[datetime]):
        raise self._unsupported("set_alarm_absolute")

    def set_location(self, lat: Optional[float], lon: Optional[float], location_text: str = ""):
        raise self._unsupported("set_location")

    def delete(self):
        raise self._unsupported("delete")

    def sync(self):
        raise self._unsupported("sync")

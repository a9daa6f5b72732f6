"""CalDAV（プロキシ経由）のタスクリストとタスク"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from tasksync.core.config import settings
from tasksync.core.errors import STALE_WRITE_MESSAGE, TaskDataNotLoadedError, TransportError, raise_for_error
from tasksync.core.timeutil import format_ical_utc, parse_ical_datetime, utcnow
from tasksync.models.task import (
    EDIT_CAPABILITIES,
    AbsoluteAlarm,
    RelativeAlarm,
    Task,
    TaskCapability,
    TaskKind,
    TaskStatus,
    clamp_priority,
    normalize_categories,
)
from tasksync.providers import ical
from tasksync.sync.tree import TaskPage, build_task_tree
from tasksync.transport import Transport

logger = logging.getLogger(__name__)

PACKAGE = "caldav_proxy"


def is_stale_write(response: Any) -> bool:
    """412（ETag不一致）を示すレスポンスか"""
    if not isinstance(response, dict) or not response.get("error"):
        return False
    return response.get("status") == 412 or response.get("error") == STALE_WRITE_MESSAGE


class CalDAVHandler:
    """リモート（CalDAV）のデータソース"""

    cant_list_completed = False

    def __init__(self, transport: Transport, on_reminder_change: Optional[Callable[[Task], Any]] = None):
        self.transport = transport
        self.on_reminder_change = on_reminder_change

    def request(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        return self.transport.request(payload, timeout=timeout or settings.REQUEST_TIMEOUT)

    def get_task_lists(self) -> List["CalDAVTaskList"]:
        response = self.request({"package": PACKAGE, "action": "get_task_lists"})
        raise_for_error(response)
        return [CalDAVTaskList(data, self) for data in response or [] if isinstance(data, dict) and data.get("id")]

    def get_task_list(self, list_id: str) -> "CalDAVTaskList":
        return CalDAVTaskList({"id": list_id, "title": ""}, self)


class CalDAVTaskList:
    """CalDAVのタスクリスト（カレンダー）"""

    def __init__(self, data: Dict[str, Any], handler: CalDAVHandler):
        self.id = data.get("id")
        self.title = data.get("title") or ""
        self.handler = handler

    def __repr__(self):
        return f"<CalDAVTaskList id={self.id!r} title={self.title!r}>"

    def get_task(self, task_id: str) -> "RemoteTask":
        """未読み込みのタスク（sync()で本体を取得）"""
        return RemoteTask({"id": task_id}, self, self.handler)

    def get_tasks(self, with_completed: bool = False, page_token: Optional[str] = None) -> TaskPage:
        """タスク一覧を取得して親子ツリーを組み立てる（CalDAVはページングなし）"""
        response = self.handler.request({
            "package": PACKAGE,
            "action": "list_tasks",
            "listId": self.id,
            "completed": "all" if with_completed else False,
        })
        raise_for_error(response)

        records = [RemoteTask(data, self, self.handler) for data in response or [] if isinstance(data, dict)]
        logger.info(f"Fetched {len(records)} task(s) from list {self.id}")
        return build_task_tree(records)

    def insert_task(self, title: str, options: Optional[Dict[str, Any]] = None) -> bool:
        response = self.handler.request({
            "package": PACKAGE,
            "action": "insert_task",
            "listId": self.id,
            "title": title,
            "options": options or {},
        })
        raise_for_error(response)
        return True

    def insert_subtask(self, title: str, parent_uid: str) -> bool:
        """RELATED-TOに親uidを入れてサブタスクを作成"""
        response = self.handler.request({
            "package": PACKAGE,
            "action": "insert_task",
            "listId": self.id,
            "title": title,
            "parentUid": parent_uid,
        })
        raise_for_error(response)
        return True


class RemoteTask(Task):
    """CalDAVのVTODO"""

    kind = TaskKind.REMOTE
    capabilities = EDIT_CAPABILITIES | {TaskCapability.DELETE, TaskCapability.SYNC}

    def __init__(self, data: Dict[str, Any], task_list: Optional[CalDAVTaskList], handler: CalDAVHandler):
        super().__init__(id=data.get("id"), on_reminder_change=handler.on_reminder_change)
        self.task_list = task_list
        self.handler = handler
        self.deleted = False
        self._load(data)

    def _load(self, data: Dict[str, Any]) -> None:
        self.raw_data = data.get("rawData")
        self.etag = data.get("etag") or ""
        vtodo = self.vtodo
        if vtodo is None:
            return

        self.title = vtodo.get("SUMMARY") or ""
        self.description = vtodo.get("DESCRIPTION") or ""
        self.status = TaskStatus.coerce(vtodo.get("STATUS") or TaskStatus.NEEDS_ACTION)
        self.uid = vtodo.get("UID") or None
        self.parent_id = ical.get_property(vtodo, "RELATED-TO") or None
        self.priority = clamp_priority(vtodo.get("PRIORITY"))
        self.start_date = parse_ical_datetime(ical.get_property(vtodo, "DTSTART"))
        self.due_date = parse_ical_datetime(ical.get_property(vtodo, "DUE"))
        self.location = vtodo.get("LOCATION") or ""
        self.geo = ical.parse_geo(vtodo.get("GEO"))
        self.categories = normalize_categories(ical.parse_categories(vtodo.get("CATEGORIES")))
        self.alarm = ical.parse_alarm(vtodo.get("VALARM"))
        self.valarm = ical.valarm_triggers(vtodo.get("VALARM"))

    @property
    def vtodo(self) -> Optional[Dict[str, Any]]:
        if not isinstance(self.raw_data, dict):
            return None
        vtodo = (self.raw_data.get("VCALENDAR") or {}).get("VTODO")
        return vtodo if isinstance(vtodo, dict) else None

    def _require_vtodo(self, operation: str) -> Dict[str, Any]:
        vtodo = self.vtodo
        if vtodo is None:
            logger.warning(f"{operation}: rawData not loaded for task {self.id}")
            raise TaskDataNotLoadedError()
        return vtodo

    def _replace(self, operation: str) -> Dict[str, Any]:
        """VTODOを書き戻す（ETagは結果に関わらずクリアし、次回同期で取り直す）"""
        self.vtodo["LAST-MODIFIED"] = format_ical_utc(utcnow())
        try:
            response = self.handler.request({
                "package": PACKAGE,
                "action": "replace_task",
                "id": self.id,
                "rawData": self.raw_data,
                "etag": self.etag,
            }, timeout=settings.WRITE_TIMEOUT)
        except TransportError as e:
            logger.error(f"{operation}: error {e}")
            raise
        finally:
            self.etag = ""

        if is_stale_write(response):
            logger.warning(f"{operation}: task {self.id} was modified elsewhere")
            return {"error": STALE_WRITE_MESSAGE}
        if isinstance(response, dict) and response.get("error"):
            logger.warning(f"{operation}: server returned error {response['error']}")
        else:
            logger.info(f"{operation}: updated task {self.id}")
        return response

    def set_status(self, status: Union[TaskStatus, str]):
        vtodo = self._require_vtodo("set_status")
        status = TaskStatus.coerce(status)
        self.status = status
        vtodo["STATUS"] = status.value

        if status == TaskStatus.COMPLETED:
            vtodo["COMPLETED"] = format_ical_utc(utcnow())
            vtodo["PERCENT-COMPLETE"] = "100"
        else:
            vtodo.pop("COMPLETED", None)
            if status == TaskStatus.IN_PROCESS:
                vtodo["PERCENT-COMPLETE"] = "50"
            else:
                vtodo.pop("PERCENT-COMPLETE", None)

        response = self._replace("set_status")
        self._notify_reminder_change()
        return response

    def set_title(self, title: str):
        vtodo = self._require_vtodo("set_title")
        self.title = title
        vtodo["SUMMARY"] = title
        return self._replace("set_title")

    def set_description(self, description: str):
        vtodo = self._require_vtodo("set_description")
        self.description = description or ""
        if description:
            vtodo["DESCRIPTION"] = description
        else:
            vtodo.pop("DESCRIPTION", None)
        return self._replace("set_description")

    def set_priority(self, priority: int):
        """0=なし, 1-4=高, 5=中, 6-9=低"""
        vtodo = self._require_vtodo("set_priority")
        self.priority = clamp_priority(priority)
        if self.priority > 0:
            vtodo["PRIORITY"] = str(self.priority)
        else:
            vtodo.pop("PRIORITY", None)
        return self._replace("set_priority")

    def set_categories(self, categories: Iterable[str]):
        vtodo = self._require_vtodo("set_categories")
        self.categories = normalize_categories(categories)
        if self.categories:
            vtodo["CATEGORIES"] = ",".join(self.categories)
        else:
            vtodo.pop("CATEGORIES", None)
        return self._replace("set_categories")

    def set_start_date(self, date: Optional[datetime]):
        vtodo = self._require_vtodo("set_start_date")
        ical.remove_property(vtodo, "DTSTART")
        self.start_date = date
        if date is not None:
            vtodo["DTSTART"] = format_ical_utc(date)
        return self._replace("set_start_date")

    def set_due_date(self, date: Optional[datetime]):
        vtodo = self._require_vtodo("set_due_date")
        ical.remove_property(vtodo, "DUE")
        self.due_date = date
        if date is not None:
            vtodo["DUE"] = format_ical_utc(date)
        response = self._replace("set_due_date")
        self._notify_reminder_change()
        return response

    def set_due_date_with_alarm(self, date: datetime, alarm_minutes: int = 0):
        """期日とリマインダーを1回のリクエストで設定（「N分後に通知」用）"""
        vtodo = self._require_vtodo("set_due_date_with_alarm")
        ical.remove_property(vtodo, "DUE")
        # DUEはDTSTARTより後でなければならないのでDTSTARTは消す
        ical.remove_property(vtodo, "DTSTART")
        self.start_date = None

        self.due_date = date
        vtodo["DUE"] = format_ical_utc(date)
        self.alarm = RelativeAlarm(alarm_minutes)
        vtodo["VALARM"] = ical.relative_valarm(alarm_minutes, self.title)
        self.valarm = ical.valarm_triggers(vtodo["VALARM"])

        response = self._replace("set_due_date_with_alarm")
        self._notify_reminder_change()
        return response

    def set_alarm(self, minutes: Optional[int]):
        """期日のN分前のリマインダー（Noneで解除）"""
        vtodo = self._require_vtodo("set_alarm")
        if minutes is not None and minutes >= 0:
            self.alarm = RelativeAlarm(minutes)
            vtodo["VALARM"] = ical.relative_valarm(minutes, self.title)
        else:
            self.alarm = None
            vtodo.pop("VALARM", None)
        self.valarm = ical.valarm_triggers(vtodo.get("VALARM"))

        response = self._replace("set_alarm")
        self._notify_reminder_change()
        return response

    def set_alarm_absolute(self, date: Optional[datetime]):
        vtodo = self._require_vtodo("set_alarm_absolute")
        if date is not None:
            self.alarm = AbsoluteAlarm(date)
            vtodo["VALARM"] = ical.absolute_valarm(date, self.title)
        else:
            self.alarm = None
            vtodo.pop("VALARM", None)
        self.valarm = []

        response = self._replace("set_alarm_absolute")
        self._notify_reminder_change()
        return response

    def set_location(self, lat: Optional[float], lon: Optional[float], location_text: str = ""):
        vtodo = self._require_vtodo("set_location")
        if lat is not None and lon is not None:
            self.geo = (lat, lon)
            vtodo["GEO"] = f"{lat};{lon}"
        else:
            self.geo = None
            vtodo.pop("GEO", None)

        self.location = location_text or ""
        if location_text:
            vtodo["LOCATION"] = location_text
        else:
            vtodo.pop("LOCATION", None)
        return self._replace("set_location")

    def delete(self):
        """タスクを削除（サブタスクは削除しない）"""
        response = self.handler.request({"package": PACKAGE, "action": "delete_task", "id": self.id})
        if not (isinstance(response, dict) and response.get("error")):
            self.deleted = True
            self._notify_reminder_change()
        return response

    def sync(self):
        """サーバーから最新のVTODOとETagを取り直す"""
        response = self.handler.request({"package": PACKAGE, "action": "read_task", "id": self.id})
        if not isinstance(response, dict) or response.get("error"):
            return response if isinstance(response, dict) else {"error": "Invalid response"}
        self._load(response)
        return {"result": True}

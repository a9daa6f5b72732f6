"""端末内に保存するローカルリスト（localLists）"""
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from pydantic.alias_generators import to_camel
from tasksync.core.errors import ListNotFoundError, TaskNotFoundError
from tasksync.core.store import LOCAL_LISTS, NEXT_ID, ConfigStore
from tasksync.core.timeutil import to_epoch_ms
from tasksync.models.snapshot import CachedTaskModel
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
from tasksync.providers.cached import fields_from_snapshot
from tasksync.sync.tree import TaskPage

logger = logging.getLogger(__name__)

LIST_ID_PREFIX = "local:"
TASK_ID_PREFIX = "cached:"

OK = {"result": True}


def _find(tasks: List[Dict[str, Any]], key: str) -> Optional[Dict[str, Any]]:
    """ネストしたタスク辞書からidかuidが一致するものを探す"""
    for task in tasks:
        if task.get("id") == key or task.get("uid") == key:
            return task
        found = _find(task.get("subtasks") or [], key)
        if found is not None:
            return found
    return None


def _remove(tasks: List[Dict[str, Any]], key: str) -> bool:
    for i, task in enumerate(tasks):
        if task.get("id") == key or task.get("uid") == key:
            del tasks[i]
            return True
        if _remove(task.get("subtasks") or [], key):
            return True
    return False


def _new_task(task_id: str, title: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
    # uidも同じ値にしてサブタスクから参照できるようにする
    model = CachedTaskModel(id=task_id, uid=task_id, title=title, parent_id=parent_id)
    return model.model_dump(mode="json", by_alias=True)


class LocalHandler:
    """ローカルリストのデータソース"""

    cant_list_completed = False

    def __init__(self, store: ConfigStore, on_reminder_change: Optional[Callable[[Task], Any]] = None):
        self.store = store
        self.on_reminder_change = on_reminder_change
        # localListsの読み書きを直列化
        self.lock = threading.RLock()

    def _lists(self) -> List[Dict[str, Any]]:
        lists = self.store.get(LOCAL_LISTS, [])
        if not isinstance(lists, list):
            logger.warning("localLists is not a list, ignoring")
            return []
        return [l for l in lists if isinstance(l, dict) and l.get("id")]

    def _next_id(self) -> int:
        value = self.store.get(NEXT_ID, 0)
        return value if isinstance(value, int) else 0

    def get_task_lists(self) -> List["LocalTaskList"]:
        return [LocalTaskList(data, self) for data in self._lists()]

    def get_task_list(self, list_id: str) -> "LocalTaskList":
        for data in self._lists():
            if data["id"] == list_id:
                return LocalTaskList(data, self)
        raise ListNotFoundError(f"Local list {list_id} not found")

    def create_list(self, title: str) -> "LocalTaskList":
        with self.lock:
            lists = self._lists()
            next_id = self._next_id()
            data = {"id": f"{LIST_ID_PREFIX}{next_id}", "title": title, "tasks": []}
            lists.append(data)
            self.store.update({LOCAL_LISTS: lists, NEXT_ID: next_id + 1})
        logger.info(f"Created local list {data['id']}")
        return LocalTaskList(data, self)

    def rename_list(self, list_id: str, title: str) -> "LocalTaskList":
        with self.lock:
            lists = self._lists()
            for data in lists:
                if data["id"] == list_id:
                    data["title"] = title
                    self.store.update({LOCAL_LISTS: lists})
                    return LocalTaskList(data, self)
        raise ListNotFoundError(f"Local list {list_id} not found")

    def delete_list(self, list_id: str) -> None:
        with self.lock:
            lists = self._lists()
            remaining = [data for data in lists if data["id"] != list_id]
            if len(remaining) == len(lists):
                raise ListNotFoundError(f"Local list {list_id} not found")
            self.store.update({LOCAL_LISTS: remaining})
        logger.info(f"Deleted local list {list_id}")

    def modify_tasks(self, list_id: str, change: Callable[[List[Dict[str, Any]]], bool], **extra) -> bool:
        """リストのタスク辞書を変更して保存（changeがFalseなら保存しない）"""
        with self.lock:
            lists = self._lists()
            for data in lists:
                if data["id"] == list_id:
                    tasks = data.setdefault("tasks", [])
                    if not change(tasks):
                        return False
                    self.store.update({LOCAL_LISTS: lists, **extra})
                    return True
        raise ListNotFoundError(f"Local list {list_id} not found")


class LocalTaskList:
    def __init__(self, data: Dict[str, Any], handler: LocalHandler):
        self.id = data["id"]
        self.title = data.get("title") or ""
        self.handler = handler

    def __repr__(self):
        return f"<LocalTaskList id={self.id!r} title={self.title!r}>"

    def _raw_tasks(self) -> List[Dict[str, Any]]:
        # 他の操作で変わっている可能性があるので毎回ストアから読む
        for data in self.handler._lists():
            if data["id"] == self.id:
                return [t for t in data.get("tasks") or [] if isinstance(t, dict)]
        return []

    def _wrap(self, raw: Dict[str, Any]) -> "LocalTask":
        return LocalTask(CachedTaskModel.model_validate(raw), self)

    def get_tasks(self, with_completed: bool = False, page_token: Optional[str] = None) -> TaskPage:
        tasks = [self._wrap(raw) for raw in self._raw_tasks()]
        if not with_completed:
            tasks = [t for t in tasks if not t.completed]
        return TaskPage(tasks=tasks)

    def get_task(self, task_id: str) -> "LocalTask":
        raw = _find(self._raw_tasks(), task_id)
        if raw is None:
            raise TaskNotFoundError(f"Task {task_id} not found in local list {self.id}")
        return self._wrap(raw)

    def insert_task(self, title: str, options: Optional[Dict[str, Any]] = None) -> "LocalTask":
        """先頭に追加"""
        with self.handler.lock:
            next_id = self.handler._next_id()
            raw = _new_task(f"{TASK_ID_PREFIX}{next_id}", title)

            def prepend(tasks):
                tasks.insert(0, raw)
                return True

            self.handler.modify_tasks(self.id, prepend, **{NEXT_ID: next_id + 1})
        logger.info(f"Inserted local task {raw['id']} into {self.id}")
        return self._wrap(raw)

    def insert_subtask(self, title: str, parent_uid: str) -> "LocalTask":
        """親タスクのsubtasksの末尾に追加"""
        with self.handler.lock:
            next_id = self.handler._next_id()
            raw = _new_task(f"{TASK_ID_PREFIX}{next_id}", title, parent_id=parent_uid)

            def append_to_parent(tasks):
                parent = _find(tasks, parent_uid)
                if parent is None:
                    return False
                parent.setdefault("subtasks", []).append(raw)
                return True

            if not self.handler.modify_tasks(self.id, append_to_parent, **{NEXT_ID: next_id + 1}):
                raise TaskNotFoundError(f"Parent task {parent_uid} not found in local list {self.id}")
        return self._wrap(raw)


class LocalTask(Task):
    """ローカルリストのタスク（変更は即座にlocalListsへ保存）"""

    kind = TaskKind.LOCAL
    capabilities = EDIT_CAPABILITIES | {TaskCapability.DELETE}

    def __init__(self, model: CachedTaskModel, task_list: LocalTaskList):
        super().__init__(**fields_from_snapshot(model), on_reminder_change=task_list.handler.on_reminder_change)
        self.task_list = task_list
        self.deleted = False
        self.subtasks = [LocalTask(s, task_list) for s in model.subtasks]

    def _update(self, **changes) -> Dict[str, Any]:
        stored = {to_camel(name): value for name, value in changes.items()}

        def apply(tasks):
            raw = _find(tasks, self.id)
            if raw is None:
                return False
            raw.update(stored)
            return True

        if not self.task_list.handler.modify_tasks(self.task_list.id, apply):
            logger.warning(f"Local task {self.id} not found in {self.task_list.id}")
            return {"error": "Task not found"}
        return dict(OK)

    def set_title(self, title: str):
        self.title = title or ""
        return self._update(title=self.title)

    def set_description(self, description: str):
        self.description = description or ""
        return self._update(description=self.description)

    def set_status(self, status: Union[TaskStatus, str]):
        self.status = TaskStatus.coerce(status)
        response = self._update(status=self.status.value, completed=self.completed, in_progress=self.in_progress)
        self._notify_reminder_change()
        return response

    def set_priority(self, priority: int):
        self.priority = clamp_priority(priority)
        return self._update(priority=self.priority)

    def set_categories(self, categories: Iterable[str]):
        self.categories = normalize_categories(categories)
        return self._update(categories=self.categories)

    def set_start_date(self, date: Optional[datetime]):
        self.start_date = date
        return self._update(start_date=to_epoch_ms(date))

    def set_due_date(self, date: Optional[datetime]):
        self.due_date = date
        response = self._update(due_date=to_epoch_ms(date))
        self._notify_reminder_change()
        return response

    def set_due_date_with_alarm(self, date: datetime, alarm_minutes: int = 0):
        self.start_date = None
        self.due_date = date
        self.alarm = RelativeAlarm(alarm_minutes)
        response = self._update(start_date=None, due_date=to_epoch_ms(date), alarm=self.alarm.to_dict())
        self._notify_reminder_change()
        return response

    def set_alarm(self, minutes: Optional[int]):
        self.alarm = RelativeAlarm(minutes) if minutes is not None and minutes >= 0 else None
        response = self._update(alarm=self.alarm.to_dict() if self.alarm else None)
        self._notify_reminder_change()
        return response

    def set_alarm_absolute(self, date: Optional[datetime]):
        self.alarm = AbsoluteAlarm(date) if date is not None else None
        response = self._update(alarm=self.alarm.to_dict() if self.alarm else None)
        self._notify_reminder_change()
        return response

    def set_location(self, lat: Optional[float], lon: Optional[float], location_text: str = ""):
        self.geo = (lat, lon) if lat is not None and lon is not None else None
        self.location = location_text or ""
        geo = {"lat": lat, "lon": lon} if self.geo else None
        return self._update(geo=geo, location=self.location)

    def delete(self):
        """タスクを削除（ネストしたサブタスクも一緒に消える）"""
        if not self.task_list.handler.modify_tasks(self.task_list.id, lambda tasks: _remove(tasks, self.id)):
            return {"error": "Task not found"}
        self.deleted = True
        self._notify_reminder_change()
        return dict(OK)

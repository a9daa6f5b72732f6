"""キャッシュ済みリスト（読み取り専用）"""
import logging
from typing import Any, Dict, List, Optional
from tasksync.core.errors import ListNotFoundError, TaskNotFoundError, UnsupportedTaskOperation
from tasksync.core.store import ConfigStore
from tasksync.core.timeutil import from_epoch_ms
from tasksync.models.snapshot import CachedListSnapshot, CachedTaskModel
from tasksync.models.task import Task, TaskKind, TaskStatus
from tasksync.sync.cache import LEGACY_LIST_ID, ListCache
from tasksync.sync.tree import TaskPage, find_task

logger = logging.getLogger(__name__)


def fields_from_snapshot(model: CachedTaskModel) -> Dict[str, Any]:
    """保存形式のタスクをTaskのコンストラクタ引数に変換"""
    status = TaskStatus.coerce(model.status)
    # statusを持たない旧形式のキャッシュはcompleted/inProgressから復元
    if "status" not in model.model_fields_set:
        if model.completed:
            status = TaskStatus.COMPLETED
        elif model.in_progress:
            status = TaskStatus.IN_PROCESS

    geo = None
    if model.geo and "lat" in model.geo and "lon" in model.geo:
        geo = (model.geo["lat"], model.geo["lon"])

    return dict(
        id=model.id,
        uid=model.uid,
        title=model.title or "",
        description=model.description or "",
        status=status,
        priority=model.priority or 0,
        categories=model.categories or [],
        start_date=from_epoch_ms(model.start_date),
        due_date=from_epoch_ms(model.due_date),
        geo=geo,
        location=model.location or "",
        alarm=model.alarm,
        parent_id=model.parent_id,
    )


class CachedTask(Task):
    """オフライン表示用のタスク（変更不可）"""

    kind = TaskKind.CACHED
    capabilities = frozenset()

    def __init__(self, model: CachedTaskModel, task_list: "CachedTaskList"):
        super().__init__(**fields_from_snapshot(model))
        self.task_list = task_list
        self.subtasks = [CachedTask(s, task_list) for s in model.subtasks]


class CachedTaskList:
    def __init__(self, snapshot: CachedListSnapshot):
        self.id = snapshot.id
        self.title = snapshot.title or ""
        self._snapshot = snapshot

    def __repr__(self):
        return f"<CachedTaskList id={self.id!r} title={self.title!r}>"

    def _tasks(self) -> List[CachedTask]:
        return [CachedTask(model, self) for model in self._snapshot.tasks]

    def get_tasks(self, with_completed: bool = False, page_token: Optional[str] = None) -> TaskPage:
        tasks = self._tasks()
        if not with_completed:
            tasks = [t for t in tasks if not t.completed]
        return TaskPage(tasks=tasks)

    def get_task(self, task_id: str) -> CachedTask:
        task = find_task(self._tasks(), task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found in cached list {self.id}")
        return task

    def insert_task(self, title: str, options: Optional[Dict[str, Any]] = None):
        raise UnsupportedTaskOperation("Cached lists are read-only")

    def insert_subtask(self, title: str, parent_uid: str):
        raise UnsupportedTaskOperation("Cached lists are read-only")


class CachedListsHandler:
    """cachedLists と旧形式の単一リストキャッシュ（id: cached）を読む"""

    cant_list_completed = False

    def __init__(self, store: ConfigStore):
        self.store = store
        self.cache = ListCache(store)

    def get_task_lists(self) -> List[CachedTaskList]:
        return [CachedTaskList(snapshot) for snapshot in self.cache.cached_lists()]

    def get_task_list(self, list_id: str) -> CachedTaskList:
        if list_id == LEGACY_LIST_ID:
            snapshot = self.cache.legacy_snapshot()
        else:
            snapshot = self.cache.get(list_id)
        if snapshot is None:
            raise ListNotFoundError(f"Cached list {list_id} not found")
        return CachedTaskList(snapshot)

"""データソースの切り替えとリストを開くときのオンライン/キャッシュ判定"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence
from tasksync.core.config import settings
from tasksync.core.errors import ListNotFoundError, RemoteError, TransportError, raise_for_error
from tasksync.core.store import CURRENT_LIST_ID, FOREVER_OFFLINE, LEGACY_TASKS, OFFLINE_MODE, ConfigStore
from tasksync.models.task import Task, TaskCapability
from tasksync.providers.cached import CachedListsHandler
from tasksync.providers.caldav import CalDAVHandler
from tasksync.providers.local import LIST_ID_PREFIX, LocalHandler
from tasksync.sync.cache import LEGACY_LIST_ID, ListCache
from tasksync.transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_LIST_TITLE = "Tasks"


class OpenState(str, enum.Enum):
    """open_listの結果"""
    RENDERED = "rendered"
    OFFLINE_PROMPT = "offline_prompt"


@dataclass
class ListView:
    """リストを開いた結果（stale=Trueはオンライン取得に失敗してキャッシュを表示）"""
    state: OpenState
    task_list: Any = None
    tasks: List[Task] = field(default_factory=list)
    next_page_token: Optional[str] = None
    stale: bool = False
    cached: bool = False
    message: Optional[str] = None
    lists: List[Any] = field(default_factory=list)


def _pick(lists: Sequence[Any], list_id: Optional[str]) -> Optional[Any]:
    """指定IDのリスト、無ければ先頭のリスト"""
    for task_list in lists:
        if task_list.id == list_id:
            return task_list
    return lists[0] if lists else None


class TasksProvider:
    """リモート・ローカル・キャッシュのデータソースをまとめる窓口"""

    def __init__(self, store: ConfigStore, transport: Transport, reminders: Any = None):
        self.store = store
        self.transport = transport
        self.reminders = reminders
        self.cache = ListCache(store)
        self.cached_handler = CachedListsHandler(store)
        self._handler = None
        self._local_handler = None

    def _reminder_changed(self, task: Task) -> None:
        if self.reminders is not None:
            self.reminders.reschedule_task_alarms(task)

    @property
    def local_handler(self) -> LocalHandler:
        if self._local_handler is None:
            self._local_handler = LocalHandler(self.store, on_reminder_change=self._reminder_changed)
        return self._local_handler

    @property
    def forever_offline(self) -> bool:
        return bool(self.store.get(FOREVER_OFFLINE, False))

    @property
    def cant_list_completed(self) -> bool:
        return bool(self._handler and self._handler.cant_list_completed)

    def _create_handler(self, data: Any):
        provider = data.get("provider") if isinstance(data, dict) else None
        if provider == "caldav":
            return CalDAVHandler(self.transport, on_reminder_change=self._reminder_changed)
        raise RemoteError(f"Unsupported provider: {provider}")

    def init(self, force_refresh: bool = False) -> None:
        """データソースを決める（初期化済みならforce_refreshのときだけやり直す）"""
        if self._handler is not None and not force_refresh:
            return

        if self.forever_offline:
            self._handler = self.local_handler
            return

        data = self.transport.request({
            "package": "tasks_login",
            "action": "get_data",
            "deviceName": settings.DEVICE_NAME,
        })
        raise_for_error(data)
        self._handler = self._create_handler(data)
        logger.info(f"Initialized provider {data.get('provider')}")

    def setup_offline(self) -> None:
        """同期なしのローカル専用モードに切り替える"""
        self._handler = self.local_handler
        self.store.update({FOREVER_OFFLINE: True, LEGACY_TASKS: []})
        if not self.local_handler.get_task_lists():
            self.local_handler.create_list(DEFAULT_LOCAL_LIST_TITLE)
        logger.info("Switched to offline mode")

    def has_cached_lists(self) -> bool:
        return self.cache.has_cached_lists()

    def create_cache_data(self, list_id: str, tasks) -> None:
        self.cache.create_cache_data(list_id, tasks)

    def cache_all_lists(self, lists) -> None:
        self.cache.cache_all_lists(lists)

    def get_task_lists(self) -> List[Any]:
        self.init()
        return self._handler.get_task_lists()

    def get_task_list(self, list_id: str):
        if list_id == LEGACY_LIST_ID:
            return self.cached_handler.get_task_list(list_id)
        if list_id.startswith(LIST_ID_PREFIX):
            return self.local_handler.get_task_list(list_id)
        self.init()
        return self._handler.get_task_list(list_id)

    def get_task(self, list_id: str, task_id: str) -> Task:
        """タスクを取得（リモートはVTODOとETagを読み込んだ状態で返す）"""
        task = self.get_task_list(list_id).get_task(task_id)
        if task.supports(TaskCapability.SYNC):
            raise_for_error(task.sync())
        return task

    # リストを開く

    def _render(self, task_list, with_completed: bool, **kwargs) -> ListView:
        page = task_list.get_tasks(with_completed)
        return ListView(
            state=OpenState.RENDERED,
            task_list=task_list,
            tasks=page.tasks,
            next_page_token=page.next_page_token,
            **kwargs,
        )

    def _render_cached(self, list_id: Optional[str], with_completed: bool, stale: bool,
                       message: Optional[str] = None) -> Optional[ListView]:
        """キャッシュから表示（cachedLists、無ければ旧形式の単一リスト）"""
        lists = self.cached_handler.get_task_lists()
        current = _pick(lists, list_id)
        if current is None and self.cache.legacy_snapshot() is not None:
            current = self.cached_handler.get_task_list(LEGACY_LIST_ID)
        if current is None:
            return None
        return self._render(current, with_completed, stale=stale, cached=True, message=message, lists=lists)

    def open_list(self, list_id: Optional[str] = None, with_completed: bool = False,
                  force_online: bool = False) -> ListView:
        """リストを開く

        1. ローカルリスト（ローカル専用モード含む）はそのまま表示
        2. 手動オフラインモードでキャッシュがあれば、force_onlineでない限り通信せずキャッシュを表示
        3. オンラインで取得できたらキャッシュを更新して表示
        4. 取得に失敗したらキャッシュを表示（stale）、キャッシュも無ければオフライン案内
        """
        list_id = list_id or self.store.get(CURRENT_LIST_ID)

        if self.forever_offline or (list_id and list_id.startswith(LIST_ID_PREFIX)):
            lists = self.local_handler.get_task_lists()
            current = _pick(lists, list_id)
            if current is None:
                return ListView(state=OpenState.OFFLINE_PROMPT, message="No local lists")
            return self._render(current, with_completed, lists=lists)

        if self.store.get(OFFLINE_MODE, False) and self.has_cached_lists() and not force_online:
            view = self._render_cached(list_id, with_completed, stale=False)
            if view is not None:
                return view

        try:
            self.init()
            lists = self.get_task_lists()
            self.cache.update_index(lists)
            current = _pick(lists, list_id)
            if current is None:
                raise ListNotFoundError("No task lists available")
            view = self._render(current, with_completed, lists=lists)
        except (TransportError, RemoteError) as e:
            logger.warning(f"Online fetch failed, falling back to cache: {e}")
            view = self._render_cached(list_id, with_completed, stale=True, message=str(e))
            if view is None:
                return ListView(state=OpenState.OFFLINE_PROMPT, message=str(e))
            return view

        self.cache.cache_current_data(current.id, current.title, view.tasks)
        self.store.set(CURRENT_LIST_ID, current.id)
        return view

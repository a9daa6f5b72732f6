"""オフラインキャッシュの突き合わせと保存"""
import logging
from typing import Any, Iterable, List, Optional, Sequence
from pydantic import ValidationError
from tasksync.core.errors import CacheOverwriteError
from tasksync.core.store import (
    CACHED_LISTS,
    FOREVER_OFFLINE,
    LEGACY_CACHE_LIST_ID,
    LEGACY_TASKS,
    ConfigStore,
)
from tasksync.core.timeutil import to_epoch_ms
from tasksync.models.snapshot import CachedListSnapshot, CachedTaskModel

logger = logging.getLogger(__name__)

LEGACY_LIST_ID = "cached"


def _attr(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _as_snapshot(entry: Any) -> Optional[CachedListSnapshot]:
    if entry is None:
        return None
    if isinstance(entry, CachedListSnapshot):
        return entry
    try:
        return CachedListSnapshot.model_validate(entry)
    except ValidationError as e:
        logger.warning(f"Dropping malformed cached list: {e.error_count()} error(s)")
        return None


def snapshot_task(task: Any) -> CachedTaskModel:
    """タスクをサブタスクごと再帰的に平坦化"""
    status = _attr(task, "status")
    geo = _attr(task, "geo")
    alarm = _attr(task, "alarm")
    return CachedTaskModel(
        id=str(_attr(task, "id")),
        uid=_attr(task, "uid"),
        title=_attr(task, "title") or "",
        description=_attr(task, "description") or "",
        completed=bool(_attr(task, "completed")),
        status=getattr(status, "value", status) or "NEEDS-ACTION",
        in_progress=bool(_attr(task, "in_progress")),
        priority=_attr(task, "priority") or 0,
        parent_id=_attr(task, "parent_id"),
        start_date=to_epoch_ms(_attr(task, "start_date")),
        due_date=to_epoch_ms(_attr(task, "due_date")),
        location=_attr(task, "location") or "",
        geo={"lat": geo[0], "lon": geo[1]} if geo else None,
        categories=list(_attr(task, "categories") or []),
        alarm=alarm.to_dict() if hasattr(alarm, "to_dict") else alarm,
        subtasks=[snapshot_task(s) for s in _attr(task, "subtasks") or []],
    )


def snapshot_list(list_id: str, title: str, tasks: Iterable[Any]) -> CachedListSnapshot:
    return CachedListSnapshot(id=list_id, title=title or "", tasks=[snapshot_task(t) for t in tasks])


def reconcile_list_index(server_lists: Sequence[Any], cached_lists: Sequence[Any]) -> List[CachedListSnapshot]:
    """サーバーのリスト一覧とキャッシュを突き合わせる

    - 両方にあるリスト: キャッシュ済みタスクはそのまま、タイトルだけ更新
    - サーバーにだけあるリスト: タスク空で追加
    - キャッシュにだけあるリスト: 削除
    """
    cached_by_id = {}
    for entry in cached_lists or []:
        snapshot = _as_snapshot(entry)
        if snapshot is not None and snapshot.id not in cached_by_id:
            cached_by_id[snapshot.id] = snapshot

    result: List[CachedListSnapshot] = []
    for server_list in server_lists or []:
        if server_list is None:
            continue
        list_id = _attr(server_list, "id")
        if not list_id:
            continue
        title = _attr(server_list, "title") or ""
        cached = cached_by_id.get(list_id)
        if cached is not None:
            result.append(cached.model_copy(update={"title": title}))
        else:
            result.append(CachedListSnapshot(id=list_id, title=title, tasks=[]))
    return result


class ListCache:
    """cachedLists（複数リスト）と旧形式の単一リストキャッシュ"""

    def __init__(self, store: ConfigStore):
        self.store = store

    @property
    def forever_offline(self) -> bool:
        return bool(self.store.get(FOREVER_OFFLINE, False))

    def cached_lists(self) -> List[CachedListSnapshot]:
        raw = self.store.get(CACHED_LISTS, [])
        if not isinstance(raw, list):
            logger.warning("cachedLists is not a list, ignoring")
            return []
        return [s for s in (_as_snapshot(entry) for entry in raw) if s is not None]

    def has_cached_lists(self) -> bool:
        return len(self.cached_lists()) > 0

    def get(self, list_id: str) -> Optional[CachedListSnapshot]:
        for snapshot in self.cached_lists():
            if snapshot.id == list_id:
                return snapshot
        return None

    def update_index(self, server_lists: Sequence[Any]) -> List[CachedListSnapshot]:
        """リスト一覧取得後のキャッシュ突き合わせ（オフライン専用モードでは何もしない）"""
        if self.forever_offline:
            return self.cached_lists()
        cached = self.store.get(CACHED_LISTS, [])
        merged = reconcile_list_index(server_lists, cached if isinstance(cached, list) else [])
        logger.info(f"List sync: {len(server_lists or [])} server, {len(merged)} cached after merge")
        self.store.update({CACHED_LISTS: [s.to_store() for s in merged]})
        return merged

    def cache_current_data(self, list_id: str, title: str, tasks: Iterable[Any]) -> Optional[CachedListSnapshot]:
        """取得したばかりのリストのタスクでキャッシュを丸ごと置き換える"""
        if self.forever_offline:
            return None
        snapshot = snapshot_list(list_id, title, tasks)

        lists = self.cached_lists()
        for i, existing in enumerate(lists):
            if existing.id == list_id:
                lists[i] = snapshot
                break
        else:
            lists.append(snapshot)

        self.store.update({
            CACHED_LISTS: [s.to_store() for s in lists],
            LEGACY_TASKS: [t.model_dump(mode="json", by_alias=True) for t in snapshot.tasks],
            LEGACY_CACHE_LIST_ID: list_id,
        })
        logger.info(f"Cached {len(snapshot.tasks)} top-level task(s) for list {list_id}")
        return snapshot

    def cache_all_lists(self, lists: Iterable[Any]) -> None:
        """{id, title, tasks} の一覧をまとめて保存"""
        if self.forever_offline:
            return
        snapshots = [snapshot_list(_attr(l, "id"), _attr(l, "title"), _attr(l, "tasks") or []) for l in lists]
        self.store.update({CACHED_LISTS: [s.to_store() for s in snapshots]})

    def create_cache_data(self, list_id: str, tasks: Iterable[Any]) -> None:
        """旧形式（単一リスト）のキャッシュを作成"""
        if self.forever_offline:
            raise CacheOverwriteError("Cache data will override offline data.")
        self.store.update({
            LEGACY_TASKS: [snapshot_task(t).model_dump(mode="json", by_alias=True) for t in tasks],
            LEGACY_CACHE_LIST_ID: list_id,
        })

    def legacy_snapshot(self) -> Optional[CachedListSnapshot]:
        raw = self.store.get(LEGACY_TASKS, None)
        if not isinstance(raw, list):
            return None
        return _as_snapshot({"id": LEGACY_LIST_ID, "title": "", "tasks": raw})

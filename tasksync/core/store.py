"""永続キー・バリューストア"""
import copy
import logging
from typing import Any, Dict
from sqlalchemy.orm import Session
from tasksync.core.db import SessionLocal
from tasksync.models.config_entry import ConfigEntry

logger = logging.getLogger(__name__)

# ストアのキー
CACHED_LISTS = "cachedLists"
LEGACY_TASKS = "tasks"
LEGACY_CACHE_LIST_ID = "cacheListID"
LOCAL_LISTS = "localLists"
NEXT_ID = "next_id"
FOREVER_OFFLINE = "forever_offline"
OFFLINE_MODE = "offlineMode"
CURRENT_LIST_ID = "cur_list_id"


class ConfigStore:
    """キャッシュ・リマインダー記録・モード設定を保持する設定ストア

    各コンポーネントのコンストラクタに渡して使う（グローバル参照はしない）。
    値はJSONシリアライズ可能なものに限る。書き込み側は単一（アプリ1インスタンス）を前提とする。
    """

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def get(self, key: str, default: Any = None) -> Any:
        """値を取得（呼び出し側が書き換えても保存値に影響しないようコピーを返す）"""
        db: Session = self._session_factory()
        try:
            entry = db.get(ConfigEntry, key)
            if entry is None:
                return copy.deepcopy(default)
            return copy.deepcopy(entry.value)
        finally:
            db.close()

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: Dict[str, Any]) -> None:
        """複数キーを1トランザクションでまとめて保存（ルートへの浅いマージ）"""
        db: Session = self._session_factory()
        try:
            for key, value in values.items():
                db.merge(ConfigEntry(key=key, value=copy.deepcopy(value)))
            db.commit()
        except Exception:
            logger.error(f"Failed to update config keys {list(values)}", exc_info=True)
            db.rollback()
            raise
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db: Session = self._session_factory()
        try:
            entry = db.get(ConfigEntry, key)
            if entry is not None:
                db.delete(entry)
                db.commit()
        finally:
            db.close()

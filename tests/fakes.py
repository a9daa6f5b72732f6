"""テスト用のフェイク（プロキシ・OSアラーム・時計・インメモリストア）"""
import copy
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from tasksync.core.db import init_db
from tasksync.core.store import ConfigStore


def make_session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def make_store() -> ConfigStore:
    return ConfigStore(make_session_factory())


class FakeTransport:
    """actionごとにレスポンス（値・関数・例外）を返す"""

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses = dict(responses or {})
        self.requests: List[tuple] = []

    def request(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        self.requests.append((copy.deepcopy(payload), timeout))
        response = self.responses.get(payload.get("action"))
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(payload)
        return copy.deepcopy(response)

    def sent(self, action: str) -> List[Dict[str, Any]]:
        return [payload for payload, _ in self.requests if payload.get("action") == action]


class FakeAlarmCapability:
    def __init__(self):
        self.alarms: Dict[int, tuple] = {}
        self.cancelled: List[int] = []
        self.fail_times = set()
        self.fail_list = False
        self._next_id = 1

    def set(self, time: int, payload: str) -> int:
        if time in self.fail_times:
            raise RuntimeError("alarm slots exhausted")
        alarm_id = self._next_id
        self._next_id += 1
        self.alarms[alarm_id] = (time, payload)
        return alarm_id

    def cancel(self, alarm_id: int) -> None:
        self.cancelled.append(alarm_id)
        self.alarms.pop(alarm_id, None)

    def list_active_ids(self) -> List[int]:
        if self.fail_list:
            raise RuntimeError("alarm service unavailable")
        return sorted(self.alarms)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def vtodo_record(task_id: str, uid: str, summary: str, parent: Optional[str] = None,
                 etag: str = '"etag-1"', **props) -> Dict[str, Any]:
    """プロキシがlist_tasks/read_taskで返す形式のレコード"""
    vtodo = {"UID": uid, "SUMMARY": summary, "STATUS": "NEEDS-ACTION"}
    if parent:
        vtodo["RELATED-TO"] = parent
    vtodo.update(props)
    return {"id": task_id, "etag": etag, "rawData": {"VCALENDAR": {"VTODO": vtodo}}}

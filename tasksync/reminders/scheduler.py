"""アプリ内リマインダーのアラーム管理

VALARMから計算した発火時刻をOSアラームとして登録し、タスクuidごとに
登録済みIDを設定ストア（appReminders）に記録する。取消・スヌーズ・
OS側アラーム一覧との突き合わせもここで行う。

同じuidへの作成・取消はuid単位のロックで直列化する。
"""
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional
from tasksync.core.store import ConfigStore
from tasksync.core.timeutil import utcnow
from tasksync.models.reminder import AppReminderRecord
from tasksync.reminders.capability import AlarmCapability
from tasksync.reminders.payload import build_task_alarm_param
from tasksync.reminders.valarm import calculate_trigger_times, has_valid_valarm, task_field

logger = logging.getLogger(__name__)

STORE_KEY = "appReminders"


@dataclass(frozen=True)
class AlarmAttempt:
    """アラーム1件の登録結果"""
    trigger_time: datetime
    alarm_id: Optional[int] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.alarm_id is not None


@dataclass
class AlarmBatch:
    """create_task_alarmsの結果（成功したIDの列として扱える）"""
    attempts: List[AlarmAttempt] = field(default_factory=list)

    @property
    def results(self) -> List[AlarmAttempt]:
        return list(self.attempts)

    @property
    def alarm_ids(self) -> List[int]:
        return [a.alarm_id for a in self.attempts if a.ok]

    @property
    def failures(self) -> List[AlarmAttempt]:
        return [a for a in self.attempts if not a.ok]

    @property
    def next_trigger_time(self) -> Optional[datetime]:
        times = [a.trigger_time for a in self.attempts if a.ok]
        return min(times) if times else None

    def __iter__(self) -> Iterator[int]:
        return iter(self.alarm_ids)

    def __len__(self) -> int:
        return len(self.alarm_ids)


class AlarmScheduler:
    """タスクのアラーム作成・取消・スヌーズ・整合"""

    def __init__(
        self,
        store: ConfigStore,
        capability: AlarmCapability,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.capability = capability
        self._clock = clock or utcnow
        self._uid_locks: Dict[str, threading.RLock] = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()
        # appReminders全体の読み書きを直列化
        self._records_lock = threading.RLock()

    def _lock_for(self, uid: str) -> threading.RLock:
        with self._locks_guard:
            return self._uid_locks[uid]

    # 記録の読み書き

    def _load_all(self) -> Dict[str, Any]:
        reminders = self.store.get(STORE_KEY, {})
        return reminders if isinstance(reminders, dict) else {}

    def _load(self, uid: str) -> Optional[AppReminderRecord]:
        raw = self._load_all().get(uid)
        if not isinstance(raw, dict):
            return None
        return AppReminderRecord.model_validate(raw)

    def _save(self, uid: str, record: AppReminderRecord) -> None:
        with self._records_lock:
            reminders = self._load_all()
            reminders[uid] = record.to_store()
            self.store.set(STORE_KEY, reminders)

    def _coerce_settings(self, uid: str, settings: Any) -> AppReminderRecord:
        if isinstance(settings, AppReminderRecord):
            return settings
        if isinstance(settings, dict):
            return AppReminderRecord.model_validate(settings)
        return self._load(uid) or AppReminderRecord()

    def _new_record(self, uid: str, settings: Any) -> AppReminderRecord:
        """既存記録があれば有効化・振動・音の設定を引き継ぐ"""
        existing = self._load(uid)
        if existing is not None:
            return existing.model_copy()
        base = self._coerce_settings(uid, settings)
        return base.model_copy(update={"alarm_ids": [], "next_trigger_time": None})

    # アラーム操作

    def create_task_alarms(self, task: Any, settings: Any = None) -> AlarmBatch:
        """タスクのVALARMから未来の発火時刻ぶんアラームを登録"""
        uid = task_field(task, "uid")
        if not uid:
            logger.warning(f"Task {task_field(task, 'id')} has no uid, cannot create alarms")
            return AlarmBatch()

        with self._lock_for(uid):
            flags = self._coerce_settings(uid, settings)
            now = self._clock()
            batch = AlarmBatch()

            trigger_times = calculate_trigger_times(task)
            for trigger_time in trigger_times:
                # 過去（現在時刻ちょうどを含む）の発火時刻は登録しない
                if trigger_time <= now:
                    logger.info(f"Skipping past trigger time {trigger_time.isoformat()} for task {uid}")
                    continue

                timestamp = int(trigger_time.timestamp())
                payload = build_task_alarm_param(
                    uid, task_field(task, "title") or "", task_field(task, "description") or "", timestamp, flags
                )
                try:
                    alarm_id = self.capability.set(timestamp, payload)
                    batch.attempts.append(AlarmAttempt(trigger_time, alarm_id=alarm_id))
                    logger.info(f"Created alarm {alarm_id} for task {uid} at {trigger_time.isoformat()}")
                except Exception as e:
                    batch.attempts.append(AlarmAttempt(trigger_time, error=e))
                    logger.error(f"Error creating alarm for task {uid} at {trigger_time.isoformat()}: {e}", exc_info=True)

            record = self._new_record(uid, settings)
            record.alarm_ids = batch.alarm_ids
            record.next_trigger_time = batch.next_trigger_time
            self._save(uid, record)

            logger.info(f"Saved {len(batch)} alarm id(s) for task {uid} ({len(batch.failures)} failed)")
            return batch

    def cancel_task_alarms(self, uid: str) -> None:
        """登録済みアラームをすべて取り消し、IDと次回発火時刻をクリア"""
        with self._lock_for(uid):
            record = self._load(uid)
            if record is None or not record.alarm_ids:
                logger.debug(f"No alarms found for task {uid}")
                return

            cancelled = 0
            for alarm_id in record.alarm_ids:
                try:
                    self.capability.cancel(alarm_id)
                    cancelled += 1
                except Exception as e:
                    logger.warning(f"Error cancelling alarm {alarm_id} for task {uid}: {e}")

            record.alarm_ids = []
            record.next_trigger_time = None
            self._save(uid, record)
            logger.info(f"Cancelled {cancelled} alarm(s) for task {uid}")

    def create_snooze_alarm(
        self,
        uid: str,
        title: str,
        description: str,
        duration_minutes: int,
        settings: Any = None,
    ) -> Optional[int]:
        """now + duration_minutes にアラームを1件登録し、既存IDに追加"""
        with self._lock_for(uid):
            flags = self._coerce_settings(uid, settings)
            snooze_time = self._clock() + timedelta(minutes=duration_minutes)
            timestamp = int(snooze_time.timestamp())
            payload = build_task_alarm_param(uid, title, description, timestamp, flags)

            try:
                alarm_id = self.capability.set(timestamp, payload)
            except Exception as e:
                logger.error(f"Error creating snooze alarm for task {uid}: {e}", exc_info=True)
                return None

            record = self._new_record(uid, settings)
            if alarm_id not in record.alarm_ids:
                record.alarm_ids.append(alarm_id)
            if record.next_trigger_time is None or record.next_trigger_time <= self._clock() \
                    or snooze_time < record.next_trigger_time:
                record.next_trigger_time = snooze_time
            self._save(uid, record)

            logger.info(f"Created snooze alarm {alarm_id} for task {uid} at {snooze_time.isoformat()}")
            return alarm_id

    def reschedule_task_alarms(self, task: Any) -> AlarmBatch:
        """取消してから再作成（リマインダー無効・期日なし・完了済み・削除済みなら取消のみ）"""
        uid = task_field(task, "uid")
        if not uid:
            return AlarmBatch()

        with self._lock_for(uid):
            self.cancel_task_alarms(uid)
            record = self._load(uid)
            if record is None or not record.enabled:
                return AlarmBatch()
            if task_field(task, "completed") or task_field(task, "deleted") \
                    or not has_valid_valarm(task):
                return AlarmBatch()
            return self.create_task_alarms(task, record)

    def acknowledge_fired_alarm(self, uid: str, alarm_id: int) -> None:
        """発火済みアラームのIDを記録から外す"""
        with self._lock_for(uid):
            record = self._load(uid)
            if record is None:
                return
            if alarm_id in record.alarm_ids:
                record.alarm_ids.remove(alarm_id)
            if record.next_trigger_time is not None and record.next_trigger_time <= self._clock():
                record.next_trigger_time = None
            self._save(uid, record)

    def reconcile_app_reminders(self) -> int:
        """OSに存在しないアラームIDを記録から削除し、削除件数を返す"""
        try:
            active = set(self.capability.list_active_ids())
        except Exception as e:
            logger.error(f"Error listing active alarms: {e}", exc_info=True)
            return 0

        now = self._clock()
        removed_total = 0
        changed = False

        with self._records_lock:
            reminders = self._load_all()
            for uid, raw in list(reminders.items()):
                if not isinstance(raw, dict):
                    continue
                record = AppReminderRecord.model_validate(raw)

                valid = [alarm_id for alarm_id in record.alarm_ids if alarm_id in active]
                removed = len(record.alarm_ids) - len(valid)
                if removed:
                    logger.info(f"Task {uid}: removed {removed} stale alarm(s)")
                    record.alarm_ids = valid
                    removed_total += removed

                passed = record.next_trigger_time is not None and record.next_trigger_time <= now
                if passed:
                    record.next_trigger_time = None

                if removed or passed:
                    reminders[uid] = record.to_store()
                    changed = True

            if changed:
                self.store.set(STORE_KEY, reminders)

        logger.info(f"Reconciled app reminders: {removed_total} stale alarm(s) removed")
        return removed_total

    # 設定の読み書き

    def get_app_reminder_settings(self, uid: str) -> Optional[AppReminderRecord]:
        record = self._load(uid)
        if record is not None and record.next_trigger_time is not None \
                and record.next_trigger_time <= self._clock():
            record.next_trigger_time = None
        return record

    def set_app_reminder_settings(self, uid: str, settings: Any) -> AppReminderRecord:
        """設定を保存（alarmIds・nextTriggerTimeは明示しなければ既存値を維持）"""
        with self._lock_for(uid):
            incoming = settings if isinstance(settings, AppReminderRecord) \
                else AppReminderRecord.model_validate(settings or {})
            existing = self._load(uid)
            if existing is not None:
                if "alarm_ids" not in incoming.model_fields_set:
                    incoming.alarm_ids = existing.alarm_ids
                if "next_trigger_time" not in incoming.model_fields_set:
                    incoming.next_trigger_time = existing.next_trigger_time
            self._save(uid, incoming)
            logger.info(f"Saved app reminder settings for task {uid}")
            return incoming

    def remove_app_reminder_settings(self, uid: str) -> None:
        with self._lock_for(uid), self._records_lock:
            reminders = self._load_all()
            if reminders.pop(uid, None) is not None:
                self.store.set(STORE_KEY, reminders)
                logger.info(f"Removed app reminder settings for task {uid}")

    def is_app_reminder_enabled(self, uid: str) -> bool:
        record = self._load(uid)
        return bool(record and record.enabled)

    def get_active_alarm_count(self, uid: str) -> int:
        record = self._load(uid)
        return len(record.alarm_ids) if record else 0

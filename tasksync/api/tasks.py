"""タスク・リマインダー API エンドポイント"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from tasksync.core.errors import (
    STALE_WRITE_MESSAGE,
    ListNotFoundError,
    RemoteError,
    TaskDataNotLoadedError,
    TaskNotFoundError,
    TransportError,
    UnsupportedTaskOperation,
)
from tasksync.core.services import get_provider, get_scheduler
from tasksync.models.reminder import AppReminderRecord, VibrationType
from tasksync.models.task import Task
from tasksync.providers.provider import ListView, TasksProvider
from tasksync.reminders.scheduler import AlarmScheduler
from tasksync.sync.cache import snapshot_task

logger = logging.getLogger(__name__)

router = APIRouter()


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LocationIn(_CamelModel):
    lat: Optional[float] = None
    lon: Optional[float] = None
    text: str = ""


class TaskPatch(_CamelModel):
    """指定したフィールドだけ更新（nullはクリア）"""
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[int] = None
    categories: Optional[List[str]] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    alarm_minutes: Optional[int] = None
    alarm_at: Optional[datetime] = None
    location: Optional[LocationIn] = None


class ReminderSettingsIn(_CamelModel):
    enabled: Optional[bool] = None
    vibration_enabled: Optional[bool] = None
    vibration_type: Optional[VibrationType] = None
    sound_enabled: Optional[bool] = None
    # 指定するとタスクを読み込んでアラームを再スケジュール
    list_id: Optional[str] = None
    task_id: Optional[str] = None


class SnoozeIn(_CamelModel):
    title: str = ""
    description: str = ""
    minutes: int = 10


class DismissIn(_CamelModel):
    alarm_id: Optional[int] = None


@contextmanager
def _errors():
    """ドメイン例外をHTTPステータスに変換"""
    try:
        yield
    except (ListNotFoundError, TaskNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnsupportedTaskOperation as e:
        raise HTTPException(status_code=405, detail=str(e))
    except TaskDataNotLoadedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except TransportError as e:
        logger.warning(f"Proxy unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    except RemoteError as e:
        raise HTTPException(status_code=502, detail=str(e))


def _check(response: Any) -> Any:
    """更新系のエラーエンベロープをHTTPエラーに変換"""
    if isinstance(response, dict) and response.get("error"):
        error = str(response["error"])
        raise HTTPException(status_code=409 if error == STALE_WRITE_MESSAGE else 502, detail=error)
    return response


def _task_out(task: Task) -> dict:
    data = snapshot_task(task).model_dump(mode="json", by_alias=True)
    data["kind"] = task.kind.value
    data["capabilities"] = sorted(c.value for c in task.capabilities)
    data["reminderCountdown"] = task.reminder_countdown()
    data["alarmText"] = task.format_alarm()
    return data


def _view_out(view: ListView) -> dict:
    task_list = view.task_list
    return {
        "state": view.state.value,
        "list": {"id": task_list.id, "title": task_list.title} if task_list is not None else None,
        "stale": view.stale,
        "cached": view.cached,
        "message": view.message,
        "nextPageToken": view.next_page_token,
        "tasks": [_task_out(t) for t in view.tasks],
    }


def _apply_patch(task: Task, patch: TaskPatch) -> None:
    fields = patch.model_fields_set

    if "title" in fields:
        _check(task.set_title(patch.title or ""))
    if "description" in fields:
        _check(task.set_description(patch.description or ""))
    if "status" in fields and patch.status:
        _check(task.set_status(patch.status))
    if "priority" in fields:
        _check(task.set_priority(patch.priority or 0))
    if "categories" in fields:
        _check(task.set_categories(patch.categories or []))
    if "start_date" in fields:
        _check(task.set_start_date(patch.start_date))

    # 期日とリマインダーを同時に指定した場合は1回の更新にまとめる
    if "due_date" in fields and patch.due_date is not None and patch.alarm_minutes is not None:
        _check(task.set_due_date_with_alarm(patch.due_date, patch.alarm_minutes))
    else:
        if "due_date" in fields:
            _check(task.set_due_date(patch.due_date))
        if "alarm_minutes" in fields:
            _check(task.set_alarm(patch.alarm_minutes))
    if "alarm_at" in fields:
        _check(task.set_alarm_absolute(patch.alarm_at))

    if "location" in fields:
        location = patch.location or LocationIn()
        _check(task.set_location(location.lat, location.lon, location.text))


@router.get("/lists")
def get_lists(provider: TasksProvider = Depends(get_provider)):
    """リスト一覧（リモート＋ローカル）"""
    with _errors():
        lists = list(provider.get_task_lists())
        if not provider.forever_offline:
            lists += provider.local_handler.get_task_lists()
    return [{"id": l.id, "title": l.title} for l in lists]


@router.get("/lists/{list_id}/tasks")
def get_tasks(
    list_id: str,
    with_completed: bool = False,
    force_online: bool = False,
    provider: TasksProvider = Depends(get_provider),
):
    """リストを開く（取得できなければキャッシュ、キャッシュも無ければ offline_prompt）"""
    with _errors():
        view = provider.open_list(list_id, with_completed=with_completed, force_online=force_online)
    return _view_out(view)


@router.patch("/lists/{list_id}/tasks/{task_id}")
def update_task(
    list_id: str,
    task_id: str,
    patch: TaskPatch,
    provider: TasksProvider = Depends(get_provider),
):
    with _errors():
        task = provider.get_task(list_id, task_id)
        _apply_patch(task, patch)
    return _task_out(task)


@router.delete("/lists/{list_id}/tasks/{task_id}")
def delete_task(list_id: str, task_id: str, provider: TasksProvider = Depends(get_provider)):
    with _errors():
        task = provider.get_task(list_id, task_id)
        _check(task.delete())
    return {"result": True}


def _record_out(scheduler: AlarmScheduler, uid: str, record: AppReminderRecord) -> dict:
    data = record.to_store()
    data["activeAlarmCount"] = scheduler.get_active_alarm_count(uid)
    return data


@router.get("/reminders/{uid}")
def get_reminder(uid: str, scheduler: AlarmScheduler = Depends(get_scheduler)):
    record = scheduler.get_app_reminder_settings(uid)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No reminder settings for {uid}")
    return _record_out(scheduler, uid, record)


@router.put("/reminders/{uid}")
def put_reminder(
    uid: str,
    body: ReminderSettingsIn,
    scheduler: AlarmScheduler = Depends(get_scheduler),
    provider: TasksProvider = Depends(get_provider),
):
    """リマインダー設定を保存し、タスク指定があればアラームを作り直す"""
    values = body.model_dump(exclude_unset=True, exclude={"list_id", "task_id"})
    current = scheduler.get_app_reminder_settings(uid) or AppReminderRecord()
    merged = current.model_dump(include={"enabled", "vibration_enabled", "vibration_type", "sound_enabled"})
    merged.update({k: v for k, v in values.items() if v is not None})
    record = scheduler.set_app_reminder_settings(uid, merged)

    if not record.enabled:
        scheduler.cancel_task_alarms(uid)
    elif body.list_id and body.task_id:
        with _errors():
            task = provider.get_task(body.list_id, body.task_id)
        scheduler.reschedule_task_alarms(task)

    return _record_out(scheduler, uid, scheduler.get_app_reminder_settings(uid) or record)


@router.post("/reminders/reconcile")
def reconcile_reminders(scheduler: AlarmScheduler = Depends(get_scheduler)):
    return {"removed": scheduler.reconcile_app_reminders()}


@router.post("/reminders/{uid}/snooze")
def snooze_reminder(uid: str, body: SnoozeIn, scheduler: AlarmScheduler = Depends(get_scheduler)):
    if body.minutes <= 0:
        raise HTTPException(status_code=422, detail="Snooze duration must be positive")
    alarm_id = scheduler.create_snooze_alarm(uid, body.title, body.description, body.minutes)
    if alarm_id is None:
        raise HTTPException(status_code=503, detail="Failed to create snooze alarm")
    return {"alarmId": alarm_id}


@router.post("/reminders/{uid}/dismiss")
def dismiss_reminder(
    uid: str,
    body: Optional[DismissIn] = None,
    scheduler: AlarmScheduler = Depends(get_scheduler),
):
    """発火したアラームを閉じる（他のアラームはそのまま）"""
    if body is not None and body.alarm_id is not None:
        scheduler.acknowledge_fired_alarm(uid, body.alarm_id)
    record = scheduler.get_app_reminder_settings(uid)
    if record is None:
        return {"result": True}
    return _record_out(scheduler, uid, record)

"""アラーム発火ジョブ"""
import logging
from sqlalchemy.orm import Session
from tasksync.celery_app import celery_app
from tasksync.core.db import SessionLocal
from tasksync.core.services import get_scheduler
from tasksync.models.scheduled_alarm import ScheduledAlarm
from tasksync.reminders.payload import parse_task_alarm_param

logger = logging.getLogger(__name__)


@celery_app.task(name="tasksync.jobs.fire_alarm.fire_task_alarm")
def fire_task_alarm(alarm_id: int):
    """ETAに達したアラームを発火させる"""
    db: Session = SessionLocal()
    try:
        # 1. 取り消し済みなら何もしない
        alarm = db.get(ScheduledAlarm, alarm_id)
        if alarm is None:
            logger.info(f"Alarm {alarm_id} was cancelled, skipping")
            return None

        # 2. 台帳から外す（発火済みのアラームはアクティブ一覧に含めない）
        payload = parse_task_alarm_param(alarm.payload)
        db.delete(alarm)
        db.commit()

        if payload is None:
            logger.warning(f"Alarm {alarm_id} has a non-task payload, ignoring")
            return None

        # 3. 通知内容をログに出し、リマインダー記録からIDを外す
        logger.info(
            f"Reminder for task {payload.task_uid}: {payload.title}"
            f" (vibration={'on' if payload.vibration_enabled else 'off'}/{payload.vibration_type},"
            f" sound={'on' if payload.sound_enabled else 'off'})"
        )
        get_scheduler().acknowledge_fired_alarm(payload.task_uid, alarm_id)

        return {
            "alarmId": alarm_id,
            "taskUid": payload.task_uid,
            "title": payload.title,
            "description": payload.description,
            "vibrationEnabled": payload.vibration_enabled,
            "vibrationType": payload.vibration_type,
            "soundEnabled": payload.sound_enabled,
        }

    except Exception as e:
        logger.error(f"Error in fire_task_alarm: {e}", exc_info=True)
        db.rollback()
    finally:
        db.close()

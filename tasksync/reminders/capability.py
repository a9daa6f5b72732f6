"""OSアラーム機能のポートとCelery実装"""
import logging
from datetime import datetime
from typing import List, Protocol
import pytz
from sqlalchemy.orm import Session
from tasksync.core.db import SessionLocal
from tasksync.models.scheduled_alarm import ScheduledAlarm
from tasksync.reminders.payload import parse_task_alarm_param

logger = logging.getLogger(__name__)


class AlarmCapability(Protocol):
    """ワンショットアラームの登録・取消・一覧"""

    def set(self, time: int, payload: str) -> int:
        """time（エポック秒）に一度だけ発火するアラームを登録してIDを返す"""

    def cancel(self, alarm_id: int) -> None:
        """アラームを取り消す（存在しないIDでも例外にしない）"""

    def list_active_ids(self) -> List[int]:
        """現在登録中のアラームID一覧"""


class CeleryAlarmCapability:
    """scheduled_alarmsテーブルとCeleryのETAタスクでOSアラームを代替する実装"""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def set(self, time: int, payload: str) -> int:
        from tasksync.jobs.fire_alarm import fire_task_alarm

        fire_at = datetime.fromtimestamp(time, tz=pytz.utc)
        parsed = parse_task_alarm_param(payload)

        db: Session = self._session_factory()
        try:
            # 1. 台帳に登録してIDを採番
            alarm = ScheduledAlarm(
                task_uid=parsed.task_uid if parsed else None,
                fire_at=fire_at,
                payload=payload,
            )
            db.add(alarm)
            db.commit()
            db.refresh(alarm)

            # 2. 発火ジョブをETA付きでenqueue（失敗したら台帳から消す）
            try:
                result = fire_task_alarm.apply_async(kwargs={"alarm_id": alarm.id}, eta=fire_at)
            except Exception:
                db.delete(alarm)
                db.commit()
                raise
            alarm.celery_task_id = result.id
            db.commit()

            logger.info(f"Scheduled alarm {alarm.id} at {fire_at.isoformat()}")
            return alarm.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def cancel(self, alarm_id: int) -> None:
        from tasksync.celery_app import celery_app

        db: Session = self._session_factory()
        try:
            alarm = db.get(ScheduledAlarm, alarm_id)
            if alarm is None:
                logger.debug(f"Alarm {alarm_id} already gone")
                return
            if alarm.celery_task_id:
                celery_app.control.revoke(alarm.celery_task_id)
            db.delete(alarm)
            db.commit()
            logger.info(f"Cancelled alarm {alarm_id}")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_active_ids(self) -> List[int]:
        db: Session = self._session_factory()
        try:
            return [row.id for row in db.query(ScheduledAlarm.id).order_by(ScheduledAlarm.id).all()]
        finally:
            db.close()

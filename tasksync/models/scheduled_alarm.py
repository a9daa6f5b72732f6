"""スケジュール済みアラームモデル"""
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func
from tasksync.core.db import Base


class ScheduledAlarm(Base):
    """Celeryに登録したワンショットアラームの台帳"""
    __tablename__ = "scheduled_alarms"

    # アラームID（リマインダー記録のalarmIdsに入る整数）
    id = Column(Integer, primary_key=True, autoincrement=True)

    task_uid = Column(String, nullable=True, index=True)
    fire_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # OSアラームのparam相当（発火時に表示内容を復元する唯一の情報）
    payload = Column(Text, nullable=False)

    celery_task_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

"""Celeryアプリ初期化"""
from celery import Celery
from celery.schedules import crontab
from tasksync.core.config import settings
import pytz

# Celeryアプリ作成
celery_app = Celery(
    "tasksync",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["tasksync.jobs.fire_alarm", "tasksync.jobs.reconcile"],
)

# 設定
celery_app.conf.update(
    timezone=pytz.timezone(settings.TIMEZONE),
    enable_utc=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_track_started=True,
    task_time_limit=60,
    task_soft_time_limit=45,
)

# Beatスケジュール設定
celery_app.conf.beat_schedule = {
    "reconcile-app-reminders": {
        "task": "tasksync.jobs.reconcile.reconcile_app_reminders",
        "schedule": crontab(minute=settings.RECONCILE_CRONTAB_MINUTE),
    },
}

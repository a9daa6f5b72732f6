"""Celery Beat: リマインダー記録の整合チェック"""
import logging
from tasksync.celery_app import celery_app
from tasksync.core.services import get_scheduler

logger = logging.getLogger(__name__)


@celery_app.task(name="tasksync.jobs.reconcile.reconcile_app_reminders")
def reconcile_app_reminders():
    """アクティブでないアラームIDを記録から削除"""
    try:
        removed = get_scheduler().reconcile_app_reminders()
        logger.info(f"Reconcile job finished: {removed} stale alarm(s) removed")
        return removed
    except Exception as e:
        logger.error(f"Error in reconcile_app_reminders: {e}", exc_info=True)
        return 0

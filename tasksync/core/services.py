"""アプリ全体で共有するストア・スケジューラー・プロバイダー"""
from functools import lru_cache
from tasksync.core.store import ConfigStore
from tasksync.providers.provider import TasksProvider
from tasksync.reminders.capability import CeleryAlarmCapability
from tasksync.reminders.scheduler import AlarmScheduler
from tasksync.transport import RequestsTransport


@lru_cache(maxsize=None)
def get_store() -> ConfigStore:
    return ConfigStore()


@lru_cache(maxsize=None)
def get_scheduler() -> AlarmScheduler:
    return AlarmScheduler(get_store(), CeleryAlarmCapability())


@lru_cache(maxsize=None)
def get_provider() -> TasksProvider:
    return TasksProvider(get_store(), RequestsTransport(), reminders=get_scheduler())

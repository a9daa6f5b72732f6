"""設定管理"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """アプリケーション設定"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # データベース設定（設定ストア・アラーム台帳）
    DATABASE_URL: str = "sqlite:///./tasksync.db"

    # Redis設定
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # CalDAVプロキシ設定
    PROXY_URL: str = "http://localhost:8080/request"
    DEVICE_NAME: str = "watch"
    REQUEST_TIMEOUT: float = 5.0  # 読み取り系
    WRITE_TIMEOUT: float = 8.0  # replace_task などの書き込み系

    # リマインダー整合チェック（Celery Beat）
    RECONCILE_CRONTAB_MINUTE: str = "*/15"

    # ログ
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # タイムゾーン（浮動時刻のVTODO日付はこのタイムゾーンで解釈）
    TIMEZONE: str = "Asia/Tokyo"  # JST


settings = Settings()

"""設定ストアのエントリモデル"""
from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func
from tasksync.core.db import Base


class ConfigEntry(Base):
    """キー・バリュー形式の永続設定（キャッシュ・リマインダー記録を含む）"""
    __tablename__ = "config_entries"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

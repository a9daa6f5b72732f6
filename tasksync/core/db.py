"""データベース接続"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from tasksync.core.config import settings


def make_engine(url: str):
    """SQLiteの場合はスレッド間共有を許可してエンジンを作成"""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, future=True)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

Base = declarative_base()


def init_db(bind=None):
    """テーブル作成"""
    # モデル定義を読み込んでからcreate_all
    from tasksync.models import config_entry, scheduled_alarm  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)

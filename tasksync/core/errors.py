"""例外定義"""

CONFIG_NOT_LOADED = "Config not loaded"
STALE_WRITE_MESSAGE = "Task was modified elsewhere. Please refresh and try again."


class TaskSyncError(Exception):
    """基底例外"""


class TransportError(TaskSyncError):
    """プロキシとの通信失敗（接続エラー・タイムアウト）"""


class RemoteError(TaskSyncError):
    """プロキシが {"error": ...} を返した（一覧取得・ハンドシェイク系）"""


class ConfigNotLoadedError(RemoteError):
    """アカウント未設定"""

    def __init__(self, message: str = CONFIG_NOT_LOADED):
        super().__init__(message)


class TaskDataNotLoadedError(TaskSyncError):
    """VTODO本体を読み込む前に更新しようとした"""

    def __init__(self, message: str = "Task data not loaded"):
        super().__init__(message)


class UnsupportedTaskOperation(TaskSyncError):
    """タスク種別が持たない操作を呼び出した"""


class ListNotFoundError(TaskSyncError):
    """リストが見つからない"""


class TaskNotFoundError(TaskSyncError):
    """タスクが見つからない"""


class CacheOverwriteError(TaskSyncError):
    """オフラインデータをキャッシュで上書きしようとした"""


def raise_for_error(response):
    """エラーエンベロープなら例外に変換して送出"""
    if isinstance(response, dict) and response.get("error"):
        message = str(response["error"])
        if message.startswith(CONFIG_NOT_LOADED):
            raise ConfigNotLoadedError(message)
        raise RemoteError(message)
    return response

"""CalDAVプロキシへのリクエスト送信"""
import logging
from typing import Any, Dict, Optional, Protocol
import requests
from tasksync.core.config import settings
from tasksync.core.errors import TransportError

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """{package, action, ...} を送ってレスポンス（結果か {"error": ...}）を受け取る"""

    def request(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        ...


class RequestsTransport:
    """requestsでプロキシにJSONを送るTransport"""

    def __init__(self, url: Optional[str] = None, session: Optional[requests.Session] = None):
        self.url = url or settings.PROXY_URL
        self.session = session or requests.Session()

    def request(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        timeout = timeout or settings.REQUEST_TIMEOUT
        action = f"{payload.get('package')}/{payload.get('action')}"
        try:
            response = self.session.post(self.url, json=payload, timeout=timeout)
        except requests.Timeout as e:
            logger.warning(f"Request {action} timed out after {timeout}s")
            raise TransportError(f"Request {action} timed out") from e
        except requests.RequestException as e:
            logger.warning(f"Request {action} failed: {e}")
            raise TransportError(f"Request {action} failed: {e}") from e

        if response.status_code == 412:
            return {"error": f"Precondition failed for {action}", "status": 412}
        if response.status_code >= 500:
            raise TransportError(f"Proxy error {response.status_code} for {action}")

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid response for {action}") from e

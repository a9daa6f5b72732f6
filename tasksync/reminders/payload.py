"""アラームparam文字列のエンコード・デコード

OSが発火時に返すのはparam文字列だけなので、表示に必要な情報はすべてここに詰める。

形式: task_[uid]_[timestamp]_[title]~[description]|V[0/1]|[C/N]|S[0/1]
例:   task_caldav-uuid-123_1736949600_Submit report~Attach the PDF|V1|C|S1

旧形式（~ と説明文なし）も読み込める。
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import unquote

logger = logging.getLogger(__name__)

PREFIX = "task_"
FIELD_SEPARATOR = "|"
TEXT_SEPARATOR = "~"
DESCRIPTION_MAX_LENGTH = 150
ELLIPSIS = "..."

_UNSAFE = re.compile(r"[|~\r\n]")
_PARAM = re.compile(r"^task_(.+?)_(\d+)_(.*?)\|(.*)$", re.DOTALL)


@dataclass(frozen=True)
class AlarmPayload:
    """デコード済みのアラーム情報"""
    task_uid: str
    timestamp: int
    title: str
    description: str = ""
    vibration_enabled: bool = True
    vibration_type: str = "C"
    sound_enabled: bool = True


def sanitize(text: Optional[str]) -> str:
    """区切り文字と改行を空白に置換"""
    return _UNSAFE.sub(" ", text or "").strip()


def encode_uid(uid: str) -> str:
    """uid中の _ と区切り文字をパーセントエンコード（タイムスタンプとの境界を一意にする）"""
    encoded = (uid or "").replace("%", "%25")
    for char, code in (("_", "%5F"), ("|", "%7C"), ("~", "%7E"), ("\r", "%0D"), ("\n", "%0A")):
        encoded = encoded.replace(char, code)
    return encoded


def truncate_description(text: str) -> str:
    if len(text) > DESCRIPTION_MAX_LENGTH:
        return text[:DESCRIPTION_MAX_LENGTH].rstrip() + ELLIPSIS
    return text


def _setting(settings: Any, name: str, default: Any) -> Any:
    if settings is None:
        return default
    if isinstance(settings, Mapping):
        value = settings.get(name)
    else:
        value = getattr(settings, name, None)
    return default if value is None else value


def build_task_alarm_param(
    task_uid: str,
    title: str,
    description: str,
    timestamp: int,
    settings: Any = None,
) -> str:
    """アラームparam文字列を作成（settingsは辞書でもAppReminderRecordでもよい）"""
    vibration = "V1" if _setting(settings, "vibration_enabled", True) else "V0"
    vibration_type = _setting(settings, "vibration_type", "C")
    vibration_type = sanitize(str(getattr(vibration_type, "value", vibration_type))) or "C"
    sound = "S1" if _setting(settings, "sound_enabled", True) else "S0"

    text = sanitize(title)
    clean_description = truncate_description(sanitize(description))
    if clean_description:
        text = f"{text}{TEXT_SEPARATOR}{clean_description}"

    uid = encode_uid(task_uid)
    return f"{PREFIX}{uid}_{int(timestamp)}_{text}{FIELD_SEPARATOR}{vibration}|{vibration_type}|{sound}"


def parse_task_alarm_param(param: Optional[str]) -> Optional[AlarmPayload]:
    """アラームparam文字列をデコード（タスク用でなければNone）"""
    if not param or not param.startswith(PREFIX):
        return None

    match = _PARAM.match(param)
    if not match:
        logger.warning(f"Failed to parse task alarm param: {param!r}")
        return None

    task_uid, timestamp, text, settings_str = match.groups()
    title, _, description = text.partition(TEXT_SEPARATOR)
    parts = settings_str.split(FIELD_SEPARATOR)
    vibration = parts[0] if len(parts) > 0 else "V1"
    vibration_type = parts[1] if len(parts) > 1 and parts[1] else "C"
    sound = parts[2] if len(parts) > 2 else "S1"

    return AlarmPayload(
        task_uid=unquote(task_uid),
        timestamp=int(timestamp),
        title=title,
        description=description,
        vibration_enabled=vibration == "V1",
        vibration_type=vibration_type,
        sound_enabled=sound == "S1",
    )

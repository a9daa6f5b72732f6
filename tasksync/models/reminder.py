"""アプリ内リマインダー記録モデル"""
import enum
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class VibrationType(str, enum.Enum):
    """振動パターン"""
    CONTINUOUS = "C"
    NOTIFICATION = "N"


class AppReminderRecord(BaseModel):
    """タスクuidごとのリマインダー設定と登録済みアラームID

    設定ストアには appReminders[uid] としてcamelCaseのJSONで保存する。
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    enabled: bool = False
    vibration_enabled: bool = True
    vibration_type: VibrationType = VibrationType.CONTINUOUS
    sound_enabled: bool = True

    # OSに登録中のアラームID（登録順・重複なし）
    alarm_ids: List[int] = []
    # 直近のスケジュールで最も早い未来の発火時刻
    next_trigger_time: Optional[datetime] = None

    @field_validator("alarm_ids", mode="before")
    @classmethod
    def _dedupe_alarm_ids(cls, value):
        if value is None:
            return []
        seen: List[int] = []
        for alarm_id in value:
            if alarm_id is not None and alarm_id not in seen:
                seen.append(alarm_id)
        return seen

    @field_validator("vibration_type", mode="before")
    @classmethod
    def _default_vibration_type(cls, value):
        return value or VibrationType.CONTINUOUS

    def to_store(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

"""オフライン用キャッシュのスナップショットモデル"""
import logging
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class CachedTaskModel(BaseModel):
    """キャッシュ保存用に平坦化したタスク（日付はエポックミリ秒）"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    uid: Optional[str] = None
    title: Optional[str] = ""
    description: Optional[str] = ""
    completed: Optional[bool] = False
    status: Optional[str] = "NEEDS-ACTION"
    in_progress: Optional[bool] = False
    priority: Optional[int] = 0
    parent_id: Optional[str] = None
    start_date: Optional[int] = None
    due_date: Optional[int] = None
    location: Optional[str] = ""
    geo: Optional[Dict[str, float]] = None
    categories: Optional[List[str]] = []
    alarm: Optional[Any] = None
    subtasks: List["CachedTaskModel"] = []

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value):
        return value if value is None else str(value)

    @field_validator("subtasks", mode="before")
    @classmethod
    def _drop_malformed_subtasks(cls, value):
        return valid_tasks(value)


def valid_tasks(value: Any) -> List[CachedTaskModel]:
    """タスクを1件ずつ検証し、壊れたものだけ捨てる"""
    if not isinstance(value, list):
        return []
    tasks: List[CachedTaskModel] = []
    for entry in value:
        if entry is None:
            continue
        try:
            tasks.append(CachedTaskModel.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Dropping malformed cached task: {e.error_count()} error(s)")
    return tasks


class CachedListSnapshot(BaseModel):
    """リスト1件分のキャッシュ"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    title: Optional[str] = ""
    tasks: List[CachedTaskModel] = []

    @field_validator("tasks", mode="before")
    @classmethod
    def _drop_malformed_tasks(cls, value):
        return valid_tasks(value)

    def to_store(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

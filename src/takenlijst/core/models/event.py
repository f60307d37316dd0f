"""Event Domain Model -- 活动日志

事件表 append-only，不允许更新或删除。
事件顺序由 entity_seq 决定，event_id 仅作唯一标识。
entity_seq 同一实体内严格单调递增。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import EntityType, EventType


class Event(BaseModel):
    """Event 数据模型"""

    event_id: str = Field(description="唯一标识，uuid4 hex")
    entity_type: EntityType = Field(description="关联实体类型")
    entity_id: str = Field(description="关联实体 ID")
    entity_seq: int = Field(description="实体内序号，严格单调递增")
    ts: datetime = Field(description="事件时间戳")
    type: EventType = Field(description="事件类型")
    actor_id: str = Field(description="操作者")
    payload: dict[str, Any] = Field(default_factory=dict, description="结构化 payload")

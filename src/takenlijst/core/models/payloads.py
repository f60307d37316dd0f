"""Event Payload 子类型

所有活动日志事件的结构化 payload 定义。
"""

from pydantic import BaseModel, Field

from .enums import TaskStatus


class TaskCreatedPayload(BaseModel):
    """TASK_CREATED 事件 payload"""

    title: str
    series_id: str | None = Field(default=None, description="由系列物化时填写")
    scheduled_date: str | None = None
    scheduled_time_minutes: int | None = None


class TaskUpdatedPayload(BaseModel):
    """TASK_UPDATED 事件 payload"""

    fields: list[str] = Field(description="发生变更的字段")
    revision: int
    via_series: bool = Field(default=False, description="是否由系列修补触发")


class StatusTransitionPayload(BaseModel):
    """TASK_COMPLETED / TASK_ABANDONED / TASK_RESTORED 事件 payload"""

    from_status: TaskStatus
    to_status: TaskStatus
    revision: int


class SeriesCreatedPayload(BaseModel):
    """SERIES_CREATED 事件 payload"""

    title: str
    rrule: str
    anchor_date: str
    anchor_time_minutes: int | None = None
    materialized: int = Field(description="首批物化的实例数")


class SeriesUpdatedPayload(BaseModel):
    """SERIES_UPDATED 事件 payload"""

    fields: list[str] = Field(description="发生变更的字段")
    revision: int
    path: str = Field(description="regenerate / patch / none")
    deleted: int = 0
    created: int = 0
    patched: int = 0

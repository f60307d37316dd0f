"""Series Domain Model -- 周期任务模板

模板由项目拥有；其生成的任务只通过 series_id 弱引用回模板，
模板本身不持有任务集合，需要时按需查询。
"""

from dataclasses import dataclass
from datetime import date, datetime

from pydantic import BaseModel, Field

from .patch import UNSET, Patch


class SeriesTemplate(BaseModel):
    """周期任务模板"""

    series_id: str = Field(description="唯一标识，uuid4 hex")
    project_id: str = Field(description="所属项目")
    created_by: str = Field(description="创建者")
    title: str = Field(description="生成任务的标题")
    description: str | None = Field(default=None, description="生成任务的描述")
    assignee_id: str | None = Field(default=None, description="默认指派人")
    default_tag_ids: list[str] = Field(default_factory=list, description="默认标签")
    rrule: str = Field(description="RFC 5545 RRULE 主体（已规范化）")
    anchor_date: date = Field(description="锚点日期")
    anchor_time_minutes: int | None = Field(
        default=None,
        ge=0,
        le=1439,
        description="锚点时刻（午夜起的分钟数），None 表示仅日期",
    )
    deadline_offset_minutes: int = Field(
        default=0,
        ge=0,
        le=525600,
        description="deadline 相对实例时刻的偏移（分钟）",
    )
    revision: int = Field(default=1, description="乐观并发版本号，每次变更严格递增")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")

    @property
    def has_time(self) -> bool:
        return self.anchor_time_minutes is not None


class SeriesDraft(BaseModel):
    """创建系列的输入（字符串字段由核心层校验）"""

    project_id: str
    title: str
    description: str | None = None
    assignee_id: str | None = None
    default_tag_ids: list[str] = Field(default_factory=list)
    rrule: str
    anchor_date: str = Field(description="YYYY-MM-DD")
    anchor_time_minutes: int | None = None
    deadline_offset_minutes: int = 0


@dataclass(frozen=True)
class SeriesUpdate:
    """系列的部分更新 -- 每个字段都是 Patch 变体"""

    title: Patch[str] = UNSET
    description: Patch[str] = UNSET
    assignee_id: Patch[str] = UNSET
    default_tag_ids: Patch[list[str]] = UNSET
    rrule: Patch[str] = UNSET
    anchor_date: Patch[str] = UNSET
    anchor_time_minutes: Patch[int] = UNSET
    deadline_offset_minutes: Patch[int] = UNSET

    # 触发重新生成实例的字段
    SCHEDULE_FIELDS = ("rrule", "anchor_date", "anchor_time_minutes", "deadline_offset_minutes")
    # 仅需就地修补实例的字段
    COSMETIC_FIELDS = ("title", "description", "assignee_id", "default_tag_ids")

    def changed_fields(self) -> set[str]:
        return {
            name
            for name in (*self.SCHEDULE_FIELDS, *self.COSMETIC_FIELDS)
            if getattr(self, name).changed
        }

    @property
    def needs_regeneration(self) -> bool:
        return any(getattr(self, name).changed for name in self.SCHEDULE_FIELDS)


"""Task Domain Model

Task 可以是独立任务（series_id 为空），也可以是由周期模板物化出的实例。
is_overdue / bucket 是读取时派生字段，从不落库。
"""

from dataclasses import dataclass
from datetime import date, datetime

from pydantic import BaseModel, Field

from ..config import LIST_DEFAULT_LIMIT, LIST_MAX_LIMIT
from .enums import TaskBucket, TaskStatus
from .patch import UNSET, Patch


class Task(BaseModel):
    """Task 数据模型"""

    task_id: str = Field(description="唯一标识，uuid4 hex")
    project_id: str = Field(description="所属项目")
    author_id: str = Field(description="创建者")
    assignee_id: str | None = Field(default=None, description="指派人")
    series_id: str | None = Field(default=None, description="来源系列（弱引用）")
    title: str = Field(description="标题")
    description: str | None = Field(default=None, description="描述")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="当前状态")
    scheduled_date: date | None = Field(default=None, description="计划日期")
    scheduled_time_minutes: int | None = Field(default=None, ge=0, le=1439)
    deadline_date: date | None = Field(default=None, description="截止日期")
    deadline_time_minutes: int | None = Field(default=None, ge=0, le=1439)
    completed_at: datetime | None = None
    completed_by: str | None = None
    abandoned_at: datetime | None = None
    abandoned_by: str | None = None
    tag_ids: list[str] = Field(default_factory=list, description="标签")
    revision: int = Field(default=1, description="乐观并发版本号，每次变更严格递增")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")

    @property
    def occurrence_key(self) -> tuple[date, int | None] | None:
        """实例槽位键 (scheduled_date, scheduled_time_minutes)"""
        if self.scheduled_date is None:
            return None
        return (self.scheduled_date, self.scheduled_time_minutes)


class TaskClassification(BaseModel):
    """时间分类结果"""

    is_overdue: bool
    bucket: TaskBucket


class TaskView(BaseModel):
    """带派生字段的任务读模型"""

    task: Task
    is_overdue: bool
    bucket: TaskBucket


class PagedTasks(BaseModel):
    """分页任务列表"""

    items: list[TaskView]
    total_count: int


class TaskDraft(BaseModel):
    """创建独立任务的输入"""

    project_id: str
    title: str
    description: str | None = None
    assignee_id: str | None = None
    scheduled_date: str | None = None
    scheduled_time_minutes: int | None = None
    deadline_date: str | None = None
    deadline_time_minutes: int | None = None
    tag_ids: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class TaskUpdate:
    """任务的部分更新"""

    title: Patch[str] = UNSET
    description: Patch[str] = UNSET
    assignee_id: Patch[str] = UNSET
    scheduled_date: Patch[str] = UNSET
    scheduled_time_minutes: Patch[int] = UNSET
    deadline_date: Patch[str] = UNSET
    deadline_time_minutes: Patch[int] = UNSET
    tag_ids: Patch[list[str]] = UNSET


class TaskListQuery(BaseModel):
    """项目内任务列表查询条件"""

    project_id: str
    timezone: str
    statuses: list[TaskStatus] = Field(default_factory=lambda: [TaskStatus.TODO])
    assignee_id: str | None = None
    include_unassigned: bool = False
    assigned_to_me: bool = False
    tag_ids: list[str] = Field(default_factory=list)
    search: str | None = None
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=LIST_DEFAULT_LIMIT, ge=1, le=LIST_MAX_LIMIT)


class HistoryQuery(BaseModel):
    """已完成 / 已放弃任务的历史查询条件"""

    timezone: str
    statuses: list[TaskStatus] = Field(
        default_factory=lambda: [TaskStatus.DONE, TaskStatus.ABANDONED]
    )
    project_id: str | None = None
    tag_ids: list[str] = Field(default_factory=list)
    completer_id: str | None = None
    from_date: str | None = Field(default=None, description="YYYY-MM-DD，默认 7 天前")
    to_date: str | None = Field(default=None, description="YYYY-MM-DD，默认今天")
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=LIST_DEFAULT_LIMIT, ge=1, le=LIST_MAX_LIMIT)

"""Takenlijst Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    EntityType,
    ErrorCode,
    EventType,
    TaskBucket,
    TaskStatus,
    validate_transition,
)
from .event import Event
from .patch import UNSET, Patch, PatchKind
from .payloads import (
    SeriesCreatedPayload,
    SeriesUpdatedPayload,
    StatusTransitionPayload,
    TaskCreatedPayload,
    TaskUpdatedPayload,
)
from .series import SeriesDraft, SeriesTemplate, SeriesUpdate
from .task import (
    HistoryQuery,
    PagedTasks,
    Task,
    TaskClassification,
    TaskDraft,
    TaskListQuery,
    TaskUpdate,
    TaskView,
)

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskBucket",
    "EventType",
    "EntityType",
    "ErrorCode",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "validate_transition",
    # 部分更新
    "Patch",
    "PatchKind",
    "UNSET",
    # Series
    "SeriesTemplate",
    "SeriesDraft",
    "SeriesUpdate",
    # Task
    "Task",
    "TaskDraft",
    "TaskUpdate",
    "TaskClassification",
    "TaskView",
    "PagedTasks",
    "TaskListQuery",
    "HistoryQuery",
    # Event
    "Event",
    # Payloads
    "TaskCreatedPayload",
    "TaskUpdatedPayload",
    "StatusTransitionPayload",
    "SeriesCreatedPayload",
    "SeriesUpdatedPayload",
]

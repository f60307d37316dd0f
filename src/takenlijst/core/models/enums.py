"""枚举定义

包含 TaskStatus 状态机、TaskBucket 展示分组、EventType、EntityType、ErrorCode，
以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    TODO = "todo"
    DONE = "done"
    ABANDONED = "abandoned"


# 合法状态流转
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.TODO: {TaskStatus.DONE, TaskStatus.ABANDONED},
    # restore 是单独授权的显式流转
    TaskStatus.ABANDONED: {TaskStatus.TODO},
    # done 不可恢复
    TaskStatus.DONE: set(),
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.DONE,
}


class TaskBucket(StrEnum):
    """展示分组 -- 读取时按调用方的 now 计算，不落库"""

    OVERDUE = "OVERDUE"
    TODAY = "TODAY"
    TOMORROW = "TOMORROW"
    UPCOMING = "UPCOMING"
    NO_DATE = "NO_DATE"


class EntityType(StrEnum):
    """活动日志关联的实体类型"""

    TASK = "task"
    SERIES = "series"


class EventType(StrEnum):
    """活动日志事件类型"""

    TASK_CREATED = "TASK_CREATED"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_ABANDONED = "TASK_ABANDONED"
    TASK_RESTORED = "TASK_RESTORED"
    SERIES_CREATED = "SERIES_CREATED"
    SERIES_UPDATED = "SERIES_UPDATED"


class ErrorCode(StrEnum):
    """错误码 -- gateway 据此映射 HTTP 状态码"""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT_STALE_WRITE = "CONFLICT_STALE_WRITE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INTERNAL = "INTERNAL_ERROR"


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed

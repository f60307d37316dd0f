"""Temporal Classifier -- 逾期标记与展示分组

纯函数，无 I/O。结果依赖调用方的 now，因此每次读取时重新计算，从不落库。

优先级：存在计划日期时只看计划字段；否则才看 deadline 字段。
"""

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from .models.enums import TaskBucket
from .models.task import Task, TaskClassification, TaskView
from .recurrence import local_instant, parse_timezone, validate_time_of_day


def _effective(
    scheduled_date: date | None,
    scheduled_time_minutes: int | None,
    deadline_date: date | None,
    deadline_time_minutes: int | None,
) -> tuple[date, int | None] | None:
    """选出参与比较的 (日期, 时刻)"""
    validate_time_of_day(scheduled_time_minutes, "scheduledTimeMinutes")
    validate_time_of_day(deadline_time_minutes, "deadlineTimeMinutes")
    if scheduled_date is not None:
        return scheduled_date, scheduled_time_minutes
    if deadline_date is not None:
        return deadline_date, deadline_time_minutes
    return None


def _is_past(day: date, time_minutes: int | None, tz: ZoneInfo, now_local: datetime) -> bool:
    if time_minutes is None:
        # 仅日期：按日历日比较，今天不算逾期
        return day < now_local.date()
    return local_instant(day, time_minutes, tz) < now_local


def is_overdue(
    scheduled_date: date | None,
    scheduled_time_minutes: int | None,
    deadline_date: date | None,
    deadline_time_minutes: int | None,
    timezone: str,
    now: datetime,
) -> bool:
    """有效日期/时刻严格早于 now 时为 True"""
    effective = _effective(
        scheduled_date, scheduled_time_minutes, deadline_date, deadline_time_minutes
    )
    if effective is None:
        return False
    tz = parse_timezone(timezone)
    return _is_past(*effective, tz, now.astimezone(tz))


def bucket(
    scheduled_date: date | None,
    scheduled_time_minutes: int | None,
    deadline_date: date | None,
    deadline_time_minutes: int | None,
    timezone: str,
    now: datetime,
) -> TaskBucket:
    """计算展示分组"""
    effective = _effective(
        scheduled_date, scheduled_time_minutes, deadline_date, deadline_time_minutes
    )
    if effective is None:
        return TaskBucket.NO_DATE

    tz = parse_timezone(timezone)
    now_local = now.astimezone(tz)
    day, time_minutes = effective
    if _is_past(day, time_minutes, tz, now_local):
        return TaskBucket.OVERDUE

    today = now_local.date()
    if day == today:
        return TaskBucket.TODAY
    if day == today + timedelta(days=1):
        return TaskBucket.TOMORROW
    return TaskBucket.UPCOMING


def classify(
    scheduled_date: date | None,
    scheduled_time_minutes: int | None,
    deadline_date: date | None,
    deadline_time_minutes: int | None,
    timezone: str,
    now: datetime,
) -> TaskClassification:
    """一次性计算 is_overdue 与 bucket"""
    args = (
        scheduled_date,
        scheduled_time_minutes,
        deadline_date,
        deadline_time_minutes,
        timezone,
        now,
    )
    return TaskClassification(is_overdue=is_overdue(*args), bucket=bucket(*args))


def view_task(task: Task, timezone: str, now: datetime) -> TaskView:
    """为单个任务附加派生字段"""
    result = classify(
        task.scheduled_date,
        task.scheduled_time_minutes,
        task.deadline_date,
        task.deadline_time_minutes,
        timezone,
        now,
    )
    return TaskView(task=task, is_overdue=result.is_overdue, bucket=result.bucket)

"""字段校验 -- 系列与任务共用

所有校验在任何写入之前执行，失败抛出 ValidationFailedError。
"""

from datetime import date, datetime

from .config import DEADLINE_OFFSET_MAX_MINUTES, DESCRIPTION_MAX_LENGTH, TITLE_MAX_LENGTH
from .exceptions import ValidationFailedError
from .recurrence import local_instant, parse_date, parse_timezone, validate_time_of_day


def validate_title(title: str | None) -> str:
    """标题去首尾空白后长度须在 1..120 之间，返回去空白后的标题"""
    if title is None or not isinstance(title, str):
        raise ValidationFailedError("Title is required")
    trimmed = title.strip()
    if not trimmed or len(trimmed) > TITLE_MAX_LENGTH:
        raise ValidationFailedError(f"Title must be between 1 and {TITLE_MAX_LENGTH} characters")
    return trimmed


def validate_description(description: str | None) -> str | None:
    if description is None:
        return None
    if not isinstance(description, str):
        raise ValidationFailedError("Description must be a string")
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationFailedError(
            f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters"
        )
    return description


def validate_deadline_offset(minutes: int | None) -> int:
    """deadline 偏移须在 [0, 525600] 闭区间内"""
    if minutes is None or isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ValidationFailedError("deadlineOffsetMinutes must be an integer")
    if minutes < 0 or minutes > DEADLINE_OFFSET_MAX_MINUTES:
        raise ValidationFailedError(
            f"deadlineOffsetMinutes must be between 0 and {DEADLINE_OFFSET_MAX_MINUTES}"
        )
    return minutes


def validate_date_time_pair(
    date_value: str | None,
    time_minutes: int | None,
    date_field: str,
    time_field: str,
) -> tuple[date | None, int | None]:
    """解析可选的 (日期, 时刻) 对；时刻不能脱离日期单独存在"""
    validate_time_of_day(time_minutes, time_field)
    if date_value is None:
        if time_minutes is not None:
            raise ValidationFailedError(f"{time_field} requires {date_field}")
        return None, None
    return parse_date(date_value, date_field), time_minutes


def validate_anchor_not_past(
    anchor_date: date,
    anchor_time_minutes: int | None,
    timezone: str,
    now: datetime,
) -> None:
    """锚点不得早于调用方时区的今天；锚点为今天且带时刻时，锚点时刻不得早于 now"""
    tz = parse_timezone(timezone)
    now_local = now.astimezone(tz)
    today = now_local.date()
    if anchor_date < today:
        raise ValidationFailedError("Anchor date cannot be in the past")
    if anchor_date == today and anchor_time_minutes is not None:
        if local_instant(anchor_date, anchor_time_minutes, tz) < now_local.replace(
            second=0, microsecond=0
        ):
            raise ValidationFailedError("Anchor time cannot be in the past")

"""Recurrence Expander -- RRULE + 锚点 -> 有序实例序列

规则在本地墙钟时间（naive datetime）上展开，再逐个解析到时区，
因此 07:30 的每日规则在夏令时切换前后都保持 07:30（civil-time 语义）。

DST 歧义处理策略：
- gap（本地时刻不存在，如春季拨快时的 02:30）：按 gap 长度向后平移（02:30 -> 03:30）
- overlap（本地时刻出现两次，如秋季回拨时的 02:30）：取较早的一次（fold=0）

展开是惰性的、可重启的：每次调用都基于规则字符串重新构建 rrule，没有隐藏的可变状态。
"""

from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.rrule import rrule, rrulestr
from pydantic import BaseModel, Field

from .config import MINUTES_PER_DAY
from .exceptions import ValidationFailedError

# 时间类规则部件；实例时刻总是取锚点时刻，这些部件一律剥离
_TIME_PARTS = frozenset({"BYHOUR", "BYMINUTE", "BYSECOND"})

# 实例时刻取锚点时刻，一天内多次的频率没有意义
_SUB_DAILY_FREQS = frozenset({"HOURLY", "MINUTELY", "SECONDLY"})

_UNTIL_UTC_FORMAT = "%Y%m%dT%H%M%SZ"
_UNTIL_LOCAL_FORMAT = "%Y%m%dT%H%M%S"


class Anchor(BaseModel):
    """展开锚点：日期 + 可选时刻 + IANA 时区"""

    start_date: date
    time_minutes: int | None = Field(default=None, ge=0, le=MINUTES_PER_DAY - 1)
    timezone: str

    @property
    def has_time(self) -> bool:
        return self.time_minutes is not None


class Occurrence(BaseModel):
    """单个实例

    local_date / time_minutes 是墙钟槽位（去重键），instant 是解析后的绝对时刻。
    """

    local_date: date
    time_minutes: int | None
    instant: datetime

    @property
    def key(self) -> tuple[date, int | None]:
        return (self.local_date, self.time_minutes)


def parse_timezone(name: str) -> ZoneInfo:
    """解析 IANA 时区名称

    Raises:
        ValidationFailedError: 时区名称无法识别
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationFailedError("Invalid timezone")
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationFailedError(f"Invalid timezone: {name}") from e


def parse_date(value: str, field: str = "date") -> date:
    """解析 YYYY-MM-DD 日期字符串"""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as e:
        raise ValidationFailedError(
            f"Invalid {field} format, expected YYYY-MM-DD"
        ) from e


def validate_time_of_day(minutes: int | None, field: str = "timeMinutes") -> int | None:
    """校验午夜起分钟数在 0..1439 之间；越界直接拒绝，不做截断"""
    if minutes is None:
        return None
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ValidationFailedError(f"{field} must be an integer")
    if minutes < 0 or minutes >= MINUTES_PER_DAY:
        raise ValidationFailedError(f"{field} must be between 0 and {MINUTES_PER_DAY - 1}")
    return minutes


def minutes_to_time(minutes: int | None) -> time:
    if minutes is None:
        return time(0, 0)
    return time(minutes // 60, minutes % 60)


def resolve_local(naive: datetime, tz: ZoneInfo) -> datetime:
    """将本地墙钟时间解析为时区内的绝对时刻（显式的 DST 策略）

    gap 内的时刻按 gap 长度向后平移；重叠时刻取 fold=0（较早的一次）。
    """
    candidate = naive.replace(tzinfo=tz, fold=0)
    # 经 UTC 往返后得到规范化的时刻：gap 时 fold=0 使用切换前的偏移，
    # 往返结果恰好落在 gap 之后 gap 长度处
    return candidate.astimezone(UTC).astimezone(tz)


def local_instant(day: date, time_minutes: int | None, tz: ZoneInfo) -> datetime:
    """日期 + 可选时刻 -> 时区内绝对时刻（无时刻时取当地午夜）"""
    return resolve_local(datetime.combine(day, minutes_to_time(time_minutes)), tz)


def _rule_body(rule: str) -> str:
    """去掉可选的 RRULE: 前缀并做基本结构检查"""
    if not isinstance(rule, str):
        raise ValidationFailedError("Invalid RRULE format")
    body = rule.strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:"):]
    if not body or "\n" in body or ":" in body:
        raise ValidationFailedError("Invalid RRULE format")
    return body.strip(";")


def _split_parts(body: str) -> list[tuple[str, str]]:
    parts = []
    for raw in body.split(";"):
        if not raw:
            continue
        name, sep, value = raw.partition("=")
        if not sep or not name.strip() or not value.strip():
            raise ValidationFailedError("Invalid RRULE format")
        parts.append((name.strip().upper(), value.strip()))
    return parts


def normalize_rule(rule: str) -> str:
    """规范化规则：去掉前缀，剥离 BYHOUR / BYMINUTE / BYSECOND

    同一系列的所有实例共享锚点的时刻（仅日期系列则都没有时刻）。
    """
    body = _rule_body(rule)
    kept = [
        raw
        for raw in body.split(";")
        if raw and raw.partition("=")[0].strip().upper() not in _TIME_PARTS
    ]
    return ";".join(kept)


def _prepare_body(body: str, tz: ZoneInfo) -> str:
    """展开前的预处理

    - UTC 形式的 UNTIL（...Z）换算为锚点时区的本地墙钟时间，
      使其能与 naive 的 civil-time 序列比较
    - COUNT 与 UNTIL 不能同时出现
    - INTERVAL 必须为正整数
    - 不支持日以下的频率（HOURLY / MINUTELY / SECONDLY）
    """
    parts = _split_parts(body)
    names = [name for name, _ in parts]
    if "FREQ" not in names:
        raise ValidationFailedError("Invalid RRULE format: FREQ is required")
    if "COUNT" in names and "UNTIL" in names:
        raise ValidationFailedError("Invalid RRULE format: COUNT and UNTIL are exclusive")

    prepared = []
    for name, value in parts:
        if name == "FREQ" and value.upper() in _SUB_DAILY_FREQS:
            raise ValidationFailedError("Invalid RRULE format: sub-daily FREQ is not supported")
        if name == "INTERVAL" and (not value.isdigit() or int(value) < 1):
            raise ValidationFailedError("Invalid RRULE format: INTERVAL must be positive")
        if name == "COUNT" and (not value.isdigit() or int(value) < 1):
            raise ValidationFailedError("Invalid RRULE format: COUNT must be positive")
        if name == "UNTIL" and value.upper().endswith("Z"):
            try:
                until_utc = datetime.strptime(value.upper(), _UNTIL_UTC_FORMAT)
            except ValueError as e:
                raise ValidationFailedError("Invalid RRULE format: bad UNTIL") from e
            until_local = until_utc.replace(tzinfo=UTC).astimezone(tz).replace(tzinfo=None)
            value = until_local.strftime(_UNTIL_LOCAL_FORMAT)
        prepared.append(f"{name}={value}")
    return ";".join(prepared)


def build_rule(rule: str, anchor: Anchor) -> rrule:
    """构建 dateutil rrule（dtstart 为锚点的本地墙钟时间）

    Raises:
        ValidationFailedError: 规则格式错误或时区无法识别
    """
    tz = parse_timezone(anchor.timezone)
    body = _prepare_body(normalize_rule(rule), tz)
    dtstart = datetime.combine(anchor.start_date, minutes_to_time(anchor.time_minutes))
    try:
        parsed = rrulestr(body, dtstart=dtstart)
    except (ValueError, TypeError, KeyError, OverflowError) as e:
        raise ValidationFailedError(f"Invalid RRULE format: {e}") from e
    if not isinstance(parsed, rrule):
        raise ValidationFailedError("Invalid RRULE format")
    return parsed


def validate_rule(rule: str, has_time: bool) -> str:
    """校验规则可解析，返回规范化后的规则文本"""
    normalized = normalize_rule(rule)
    build_rule(
        normalized,
        Anchor(
            start_date=date(2000, 1, 3),
            time_minutes=0 if has_time else None,
            timezone="UTC",
        ),
    )
    return normalized


def expand(rule: str, anchor: Anchor) -> Iterator[Occurrence]:
    """展开规则，返回严格递增的惰性实例迭代器

    规则和时区在返回迭代器之前即完成校验；迭代本身不再抛出校验错误。
    序列可能是无限的，调用方负责截断。
    """
    parsed = build_rule(rule, anchor)
    tz = parse_timezone(anchor.timezone)
    return _iterate(parsed, tz, anchor.time_minutes)


def _iterate(
    parsed: rrule,
    tz: ZoneInfo,
    time_minutes: int | None,
) -> Iterator[Occurrence]:
    previous: datetime | None = None
    for naive in parsed:
        instant = resolve_local(naive, tz)
        # gap 平移可能让相邻实例重合，保持严格递增
        if previous is not None and instant <= previous:
            continue
        previous = instant
        yield Occurrence(
            local_date=naive.date(),
            time_minutes=time_minutes,
            instant=instant,
        )


def deadline_for(
    occurrence: Occurrence,
    offset_minutes: int,
    tz: ZoneInfo,
) -> tuple[date, int | None]:
    """实例时刻 + 偏移（按实际经过的分钟数）-> (deadline 日期, deadline 时刻)

    仅日期系列的 deadline 也只有日期。
    """
    deadline = (
        occurrence.instant.astimezone(UTC) + timedelta(minutes=offset_minutes)
    ).astimezone(tz)
    if occurrence.time_minutes is None:
        return deadline.date(), None
    return deadline.date(), deadline.hour * 60 + deadline.minute

"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、默认时区、系列补齐目标数量以及字段校验上限等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TAKENLIJST_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TAKENLIJST_DB_PATH",
        str(_get_base_dir() / "sqlite" / "takenlijst.db"),
    )


def get_default_timezone() -> str:
    """获取未显式传入时区时使用的默认 IANA 时区"""
    return os.environ.get("TAKENLIJST_DEFAULT_TIMEZONE", "UTC")


# 每个系列需要保持的未来 todo 实例数量
SERIES_OCCURRENCE_TARGET: int = int(
    os.environ.get("TAKENLIJST_SERIES_OCCURRENCE_TARGET", "5")
)

# 标题 / 描述长度上限
TITLE_MAX_LENGTH: int = 120
DESCRIPTION_MAX_LENGTH: int = 5000

# deadline 偏移上限（分钟，365 天）
DEADLINE_OFFSET_MAX_MINUTES: int = 525600

# 一天内的分钟数上限（time-of-day 合法区间为 0..1439）
MINUTES_PER_DAY: int = 1440

# 历史查询默认回溯天数
HISTORY_DEFAULT_DAYS: int = 7

# 列表查询默认分页
LIST_DEFAULT_LIMIT: int = 20
LIST_MAX_LIMIT: int = 200

"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# 协作方目录：用户 / 项目 / 成员 / 标签
_DIRECTORY_DDL = [
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id      TEXT PRIMARY KEY,
        display_name TEXT NOT NULL DEFAULT ''
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
        project_id TEXT PRIMARY KEY,
        name       TEXT NOT NULL DEFAULT ''
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS project_members (
        project_id TEXT NOT NULL,
        user_id    TEXT NOT NULL,
        PRIMARY KEY (project_id, user_id),
        FOREIGN KEY (project_id) REFERENCES projects(project_id) ON DELETE CASCADE,
        FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
        tag_id TEXT PRIMARY KEY,
        name   TEXT NOT NULL DEFAULT ''
    );
    """,
]

# series 表 DDL
_SERIES_DDL = """
CREATE TABLE IF NOT EXISTS series (
    series_id               TEXT PRIMARY KEY,
    project_id              TEXT NOT NULL,
    created_by              TEXT NOT NULL,
    title                   TEXT NOT NULL,
    description             TEXT,
    assignee_id             TEXT,
    rrule                   TEXT NOT NULL,
    anchor_date             TEXT NOT NULL,
    anchor_time_minutes     INTEGER,
    deadline_offset_minutes INTEGER NOT NULL DEFAULT 0,
    revision                INTEGER NOT NULL DEFAULT 1,
    created_at              TEXT NOT NULL,
    updated_at              TEXT NOT NULL,

    FOREIGN KEY (project_id) REFERENCES projects(project_id)
);
"""

_SERIES_TAGS_DDL = """
CREATE TABLE IF NOT EXISTS series_tags (
    series_id TEXT NOT NULL,
    tag_id    TEXT NOT NULL,
    PRIMARY KEY (series_id, tag_id),
    FOREIGN KEY (series_id) REFERENCES series(series_id) ON DELETE CASCADE,
    FOREIGN KEY (tag_id) REFERENCES tags(tag_id)
);
"""

# tasks 表 DDL（日期列为 YYYY-MM-DD 文本，时刻列为午夜起分钟数）
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id                TEXT PRIMARY KEY,
    project_id             TEXT NOT NULL,
    author_id              TEXT NOT NULL,
    assignee_id            TEXT,
    series_id              TEXT,
    title                  TEXT NOT NULL,
    description            TEXT,
    status                 TEXT NOT NULL DEFAULT 'todo',
    scheduled_date         TEXT,
    scheduled_time_minutes INTEGER,
    deadline_date          TEXT,
    deadline_time_minutes  INTEGER,
    completed_at           TEXT,
    completed_by           TEXT,
    abandoned_at           TEXT,
    abandoned_by           TEXT,
    revision               INTEGER NOT NULL DEFAULT 1,
    created_at             TEXT NOT NULL,
    updated_at             TEXT NOT NULL,

    FOREIGN KEY (project_id) REFERENCES projects(project_id),
    FOREIGN KEY (series_id) REFERENCES series(series_id)
);
"""

_TASK_TAGS_DDL = """
CREATE TABLE IF NOT EXISTS task_tags (
    task_id TEXT NOT NULL,
    tag_id  TEXT NOT NULL,
    PRIMARY KEY (task_id, tag_id),
    FOREIGN KEY (task_id) REFERENCES tasks(task_id) ON DELETE CASCADE,
    FOREIGN KEY (tag_id) REFERENCES tags(tag_id)
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_project_status ON tasks(project_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_series_id ON tasks(series_id);",
    (
        "CREATE INDEX IF NOT EXISTS idx_tasks_schedule "
        "ON tasks(scheduled_date, scheduled_time_minutes);"
    ),
    # 同一系列的每个 (日期, 时刻) 槽位至多一个实例；时刻为空时按 -1 参与比较
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_series_slot "
        "ON tasks(series_id, scheduled_date, COALESCE(scheduled_time_minutes, -1)) "
        "WHERE series_id IS NOT NULL;"
    ),
    "CREATE INDEX IF NOT EXISTS idx_task_tags_tag_id ON task_tags(tag_id);",
]

# events 表 DDL（活动日志，append-only）
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    event_id    TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    entity_id   TEXT NOT NULL,
    entity_seq  INTEGER NOT NULL,
    ts          TEXT NOT NULL,
    type        TEXT NOT NULL,
    actor_id    TEXT NOT NULL,
    payload     TEXT NOT NULL DEFAULT '{}'
);
"""

_EVENTS_INDEXES = [
    # 实体内事件序号唯一约束（确保 entity_seq 严格单调递增）
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_entity_seq "
        "ON events(entity_type, entity_id, entity_seq);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);",
]


async def apply_pragmas(conn: aiosqlite.Connection) -> None:
    """设置连接级 PRAGMA（每个新连接都需要）"""
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    DDL 均为 IF NOT EXISTS，可重复执行。

    Args:
        conn: aiosqlite 数据库连接（isolation_level=None，自动提交）
    """
    await apply_pragmas(conn)

    # 创建表
    for ddl in _DIRECTORY_DDL:
        await conn.execute(ddl)
    await conn.execute(_SERIES_DDL)
    await conn.execute(_SERIES_TAGS_DDL)
    await conn.execute(_TASKS_DDL)
    await conn.execute(_TASK_TAGS_DDL)
    await conn.execute(_EVENTS_DDL)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _EVENTS_INDEXES:
        await conn.execute(idx_sql)


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"

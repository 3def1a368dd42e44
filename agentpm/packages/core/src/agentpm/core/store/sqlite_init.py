"""SQLite 数据库初始化

PRAGMA 配置 + projects/tasks 两张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# projects 表 DDL
_PROJECTS_DDL = """
CREATE TABLE IF NOT EXISTS projects (
    project_id  TEXT PRIMARY KEY,
    title       TEXT NOT NULL,
    planning_tokens INTEGER NOT NULL DEFAULT 0 CHECK (planning_tokens >= 0),
    tokens_used INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""

_PROJECTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_projects_created_at ON projects(created_at DESC);",
]

# tasks 表 DDL：result 非空当且仅当 COMPLETED
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id         TEXT PRIMARY KEY,
    project_id      TEXT NOT NULL,
    description     TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'PENDING',
    result          TEXT,
    tokens_used     INTEGER CHECK (tokens_used IS NULL OR tokens_used >= 0),
    assigned_agent  TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,

    CHECK ((status = 'COMPLETED') = (result IS NOT NULL)),
    FOREIGN KEY (project_id) REFERENCES projects(project_id) ON DELETE CASCADE
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_project_id ON tasks(project_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_PROJECTS_DDL)
    await conn.execute(_TASKS_DDL)
    await _add_missing_columns(conn)

    for idx_sql in _PROJECTS_INDEXES + _TASKS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


# 旧库缺失的列：(表, 列, 列定义)
_ADDED_COLUMNS = [
    ("projects", "planning_tokens", "INTEGER NOT NULL DEFAULT 0"),
]


async def _add_missing_columns(conn: aiosqlite.Connection) -> None:
    for table, column, definition in _ADDED_COLUMNS:
        cursor = await conn.execute(f"PRAGMA table_info({table});")
        existing = {row[1] for row in await cursor.fetchall()}
        if column not in existing:
            await conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition};")


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"

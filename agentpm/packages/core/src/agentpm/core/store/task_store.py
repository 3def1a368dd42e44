"""TaskStore SQLite 实现

状态更新一律带 expected_status 做 compare-and-set，
返回是否命中，由 TaskLifecycle 判断流转是否生效。
"""

from collections.abc import Iterable
from datetime import datetime

import aiosqlite

from ..models.task import Task


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录（调用方负责 commit）"""
        await self._conn.execute(
            """
            INSERT INTO tasks (task_id, project_id, description, status, result,
                               tokens_used, assigned_agent, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.project_id,
                task.description,
                task.status.value,
                task.result,
                task.tokens_used,
                task.assigned_agent,
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
            ),
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            "SELECT * FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks_for_project(self, project_id: str) -> list[Task]:
        """查询项目下所有任务，按创建顺序"""
        cursor = await self._conn.execute(
            "SELECT * FROM tasks WHERE project_id = ? ORDER BY created_at, rowid",
            (project_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def update_status(
        self,
        task_id: str,
        status: str,
        expected_status: str,
        updated_at: str,
        assigned_agent: str | None = None,
    ) -> bool:
        """CAS 更新状态（不涉及 result）

        Returns:
            True 如果当前状态等于 expected_status 且已更新
        """
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET status = ?, updated_at = ?,
                assigned_agent = COALESCE(?, assigned_agent)
            WHERE task_id = ? AND status = ?
            """,
            (status, updated_at, assigned_agent, task_id, expected_status),
        )
        return cursor.rowcount == 1

    async def save_result(
        self,
        task_id: str,
        content: str,
        tokens_used: int,
        expected_statuses: Iterable[str],
        updated_at: str,
    ) -> bool:
        """写入最终结果并推进到 COMPLETED（CAS）

        Returns:
            True 如果当前状态在 expected_statuses 中且已更新
        """
        expected = list(expected_statuses)
        placeholders = ", ".join("?" for _ in expected)
        cursor = await self._conn.execute(
            f"""
            UPDATE tasks
            SET status = 'COMPLETED', result = ?, tokens_used = ?, updated_at = ?
            WHERE task_id = ? AND status IN ({placeholders})
            """,
            (content, tokens_used, updated_at, task_id, *expected),
        )
        return cursor.rowcount == 1

    async def reset_status(self, from_status: str, to_status: str, updated_at: str) -> int:
        """批量把处于 from_status 的任务改为 to_status（调用方负责 commit）

        Returns:
            受影响的任务数
        """
        cursor = await self._conn.execute(
            "UPDATE tasks SET status = ?, updated_at = ? WHERE status = ?",
            (to_status, updated_at, from_status),
        )
        return cursor.rowcount

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task(
            task_id=row["task_id"],
            project_id=row["project_id"],
            description=row["description"],
            status=row["status"],
            result=row["result"],
            tokens_used=row["tokens_used"],
            assigned_agent=row["assigned_agent"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

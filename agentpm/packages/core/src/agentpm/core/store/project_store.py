"""ProjectStore SQLite 实现"""

from datetime import UTC, datetime

import aiosqlite

from ..models.task import Project


class SqliteProjectStore:
    """ProjectStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_project(self, project: Project) -> None:
        """创建项目记录（调用方负责 commit）"""
        await self._conn.execute(
            """
            INSERT INTO projects
                (project_id, title, planning_tokens, tokens_used, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                project.project_id,
                project.title,
                project.planning_tokens,
                project.tokens_used,
                project.created_at.isoformat(),
                project.updated_at.isoformat(),
            ),
        )

    async def get_project(self, project_id: str) -> Project | None:
        """根据 project_id 查询项目"""
        cursor = await self._conn.execute(
            "SELECT * FROM projects WHERE project_id = ?",
            (project_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_project(row)

    async def list_projects(self) -> list[Project]:
        """查询项目列表，按 created_at 倒序"""
        cursor = await self._conn.execute(
            "SELECT * FROM projects ORDER BY created_at DESC"
        )
        rows = await cursor.fetchall()
        return [self._row_to_project(row) for row in rows]

    async def delete_project(self, project_id: str) -> bool:
        """删除项目，tasks 通过外键级联删除

        Returns:
            True 如果项目存在并已删除
        """
        cursor = await self._conn.execute(
            "DELETE FROM projects WHERE project_id = ?",
            (project_id,),
        )
        return cursor.rowcount == 1

    async def recompute_tokens(self, project_id: str) -> int:
        """重新汇总 tokens_used = planning_tokens + 所属任务 token（调用方负责 commit）

        Returns:
            汇总后的 token 数
        """
        cursor = await self._conn.execute(
            """
            SELECT p.planning_tokens + COALESCE(
                (SELECT SUM(t.tokens_used) FROM tasks t WHERE t.project_id = p.project_id), 0
            )
            FROM projects p WHERE p.project_id = ?
            """,
            (project_id,),
        )
        row = await cursor.fetchone()
        total = int(row[0]) if row is not None else 0
        await self._conn.execute(
            "UPDATE projects SET tokens_used = ?, updated_at = ? WHERE project_id = ?",
            (total, datetime.now(UTC).isoformat(), project_id),
        )
        return total

    @staticmethod
    def _row_to_project(row: aiosqlite.Row) -> Project:
        return Project(
            project_id=row["project_id"],
            title=row["title"],
            planning_tokens=row["planning_tokens"],
            tokens_used=row["tokens_used"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

"""Store Protocol 接口定义

TaskLifecycle 只依赖以下结构化接口（duck typing），
SQLite 实现之外的持久化后端实现同样的方法即可替换。
"""

from collections.abc import Iterable
from typing import Protocol

from ..models.task import Project, Task


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def list_tasks_for_project(self, project_id: str) -> list[Task]:
        """查询项目下所有任务"""
        ...

    async def update_status(
        self,
        task_id: str,
        status: str,
        expected_status: str,
        updated_at: str,
        assigned_agent: str | None = None,
    ) -> bool:
        """CAS 更新状态"""
        ...

    async def save_result(
        self,
        task_id: str,
        content: str,
        tokens_used: int,
        expected_statuses: Iterable[str],
        updated_at: str,
    ) -> bool:
        """写入最终结果并推进到 COMPLETED"""
        ...

    async def reset_status(self, from_status: str, to_status: str, updated_at: str) -> int:
        """批量状态重置（启动恢复）"""
        ...


class ProjectStore(Protocol):
    """Project 存储接口"""

    async def create_project(self, project: Project) -> None:
        """创建项目记录"""
        ...

    async def get_project(self, project_id: str) -> Project | None:
        """根据 project_id 查询项目"""
        ...

    async def list_projects(self) -> list[Project]:
        """查询项目列表"""
        ...

    async def delete_project(self, project_id: str) -> bool:
        """删除项目（级联删除任务）"""
        ...

    async def recompute_tokens(self, project_id: str) -> int:
        """重新汇总项目 token"""
        ...

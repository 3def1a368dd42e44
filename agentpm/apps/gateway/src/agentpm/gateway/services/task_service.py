"""TaskService -- 项目/任务创建、查询、指派、删除与批量执行

状态流转一律委托给 TaskLifecycle；这里只负责 CRUD 与编排。
"""

from datetime import UTC, datetime

import structlog
from agentpm.core.exceptions import (
    AgentPMError,
    ConflictError,
    ProducerError,
    ProjectNotFoundError,
)
from agentpm.core.lifecycle import TaskLifecycle
from agentpm.core.models import Project, Task, TaskStatus
from agentpm.core.store import StoreGroup
from agentpm.core.store.transaction import transaction
from agentpm.provider import ProviderError, delegate_agent, get_role, plan_project
from pydantic import BaseModel, Field
from ulid import ULID

from .stream_service import StreamService, producer_error

log = structlog.get_logger()

# 未给标题时取项目请求的前若干字符
TITLE_FROM_REQUEST_CHARS = 200


class NewTask(BaseModel):
    """创建项目时的单个任务描述"""

    description: str = Field(min_length=1)
    agent: str | None = Field(default=None, description="指定 agent；为空时按 auto_assign 处理")


class ProjectSummary(BaseModel):
    """项目摘要（列表项）"""

    project: Project
    task_count: int
    completed_count: int
    assigned_count: int


class ExecutionOutcome(BaseModel):
    """批量执行中单个任务的结果"""

    task_id: str
    status: TaskStatus
    result: str | None = None
    tokens_used: int | None = None
    error: dict[str, str] | None = None


class TaskService:
    """项目与任务业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        lifecycle: TaskLifecycle,
        stream_service: StreamService | None = None,
    ) -> None:
        self._stores = store_group
        self._lifecycle = lifecycle
        self._stream_service = stream_service

    async def create_project(
        self,
        title: str,
        tasks: list[NewTask],
        auto_assign: bool = True,
        planning_tokens: int = 0,
    ) -> tuple[Project, list[Task]]:
        """创建项目及其任务（单事务）

        指定了 agent 的任务直接处于 ASSIGNED；未指定时 auto_assign 按关键词委派，
        否则停留在 PENDING 等待 assign。

        Raises:
            UnknownAgentError: 指定的 agent 不存在
        """
        now = datetime.now(UTC)
        project = Project(
            project_id=str(ULID()),
            title=title,
            planning_tokens=planning_tokens,
            tokens_used=planning_tokens,
            created_at=now,
            updated_at=now,
        )

        created: list[Task] = []
        for item in tasks:
            agent = item.agent
            if agent is not None:
                get_role(agent)
            elif auto_assign:
                agent = delegate_agent(item.description)
            created.append(
                Task(
                    task_id=str(ULID()),
                    project_id=project.project_id,
                    description=item.description,
                    status=TaskStatus.ASSIGNED if agent else TaskStatus.PENDING,
                    assigned_agent=agent,
                    created_at=now,
                    updated_at=now,
                )
            )

        async with transaction(self._stores.conn):
            await self._stores.project_store.create_project(project)
            for task in created:
                await self._stores.task_store.create_task(task)

        log.info(
            "project_created",
            project_id=project.project_id,
            task_count=len(created),
            assigned=sum(1 for t in created if t.status == TaskStatus.ASSIGNED),
        )
        return project, created

    async def create_project_from_request(
        self,
        project_request: str,
        title: str | None = None,
        max_tasks: int = 8,
    ) -> tuple[Project, list[Task]]:
        """Project Manager 拆解自由文本的项目请求，再按关键词把每个任务委派给专家

        拆解消耗的 token 记为项目的 planning_tokens，并计入项目汇总。

        Raises:
            ProducerError: 拆解失败（对外只暴露异常类型）
        """
        if self._stream_service is None:
            raise RuntimeError("create_project_from_request requires a StreamService")

        plan_id = f"plan-{ULID()}"
        try:
            breakdown = await plan_project(
                self._stream_service.source,
                project_request,
                plan_id=plan_id,
                max_tasks=max_tasks,
            )
        except ProviderError as e:
            log.warning(
                "project_planning_failed",
                plan_id=plan_id,
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise producer_error(e, action="Project breakdown") from e
        except Exception as e:
            log.error(
                "project_planning_crashed",
                plan_id=plan_id,
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise ProducerError(f"Project breakdown failed: {type(e).__name__}") from e

        return await self.create_project(
            title or project_request[:TITLE_FROM_REQUEST_CHARS],
            [NewTask(description=description) for description in breakdown.tasks],
            auto_assign=True,
            planning_tokens=breakdown.total_tokens,
        )

    async def get_project(self, project_id: str) -> Project:
        project = await self._stores.project_store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    async def list_projects(self) -> list[ProjectSummary]:
        """查询项目列表（按 created_at 倒序）及任务计数"""
        summaries = []
        for project in await self._stores.project_store.list_projects():
            tasks = await self._stores.task_store.list_tasks_for_project(project.project_id)
            summaries.append(
                ProjectSummary(
                    project=project,
                    task_count=len(tasks),
                    completed_count=sum(1 for t in tasks if t.status == TaskStatus.COMPLETED),
                    assigned_count=sum(1 for t in tasks if t.status == TaskStatus.ASSIGNED),
                )
            )
        return summaries

    async def list_project_tasks(self, project_id: str) -> list[Task]:
        await self.get_project(project_id)
        return await self._stores.task_store.list_tasks_for_project(project_id)

    async def get_task(self, task_id: str) -> Task:
        return await self._lifecycle.get_task(task_id)

    async def assign_task(self, task_id: str, agent: str | None = None) -> Task:
        """PENDING -> ASSIGNED；未指定 agent 时按关键词委派

        Raises:
            UnknownAgentError: 指定的 agent 不存在
            InvalidTransitionError: 任务不在 PENDING
        """
        if agent is None:
            task = await self._lifecycle.get_task(task_id)
            agent = delegate_agent(task.description)
        else:
            get_role(agent)
        return await self._lifecycle.assign(task_id, agent)

    async def delete_project(self, project_id: str) -> None:
        """删除项目，任务级联删除

        Raises:
            ProjectNotFoundError: 项目不存在
            ConflictError: 项目下有任务正在流式执行
        """
        tasks = await self.list_project_tasks(project_id)
        registry = self._lifecycle.registry
        for task in tasks:
            if task.task_id in registry:
                raise ConflictError(task.task_id)

        async with transaction(self._stores.conn):
            deleted = await self._stores.project_store.delete_project(project_id)
        if not deleted:
            raise ProjectNotFoundError(project_id)

        for task in tasks:
            await self._lifecycle.forget(task.task_id)
        log.info("project_deleted", project_id=project_id, task_count=len(tasks))

    async def execute_all(self, project_id: str) -> list[ExecutionOutcome]:
        """顺序阻塞执行项目下所有 ASSIGNED 任务

        单个任务失败不影响后续任务，失败信息记录在对应结果里。
        """
        if self._stream_service is None:
            raise RuntimeError("execute_all requires a StreamService")

        outcomes: list[ExecutionOutcome] = []
        for task in await self.list_project_tasks(project_id):
            if task.status != TaskStatus.ASSIGNED:
                continue
            try:
                done = await self._stream_service.execute(task.task_id)
            except AgentPMError as e:
                current = await self._lifecycle.get_task(task.task_id)
                outcomes.append(
                    ExecutionOutcome(
                        task_id=task.task_id,
                        status=current.status,
                        error=e.to_dict(),
                    )
                )
                continue
            outcomes.append(
                ExecutionOutcome(
                    task_id=done.task_id,
                    status=done.status,
                    result=done.result,
                    tokens_used=done.tokens_used,
                )
            )

        log.info(
            "project_executed",
            project_id=project_id,
            executed=len(outcomes),
            failed=sum(1 for o in outcomes if o.error is not None),
        )
        return outcomes

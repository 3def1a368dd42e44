"""TaskLifecycle -- 任务状态机的唯一写入方

PENDING -> ASSIGNED -> EXECUTING -> COMPLETED；EXECUTING 失败/取消回到 ASSIGNED。
同一任务的流转由 task 级 asyncio.Lock 串行化，落库时再以 expected_status 做 CAS。
进入 EXECUTING 时在 StreamRegistry 登记会话，保证同一任务同时最多一次执行。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog

from .exceptions import AgentPMError, InvalidTransitionError, TaskNotFoundError
from .models import TERMINAL_STATES, Task, TaskStatus, validate_transition
from .store import StoreGroup
from .store.transaction import transaction
from .streaming.registry import StreamRegistry, StreamSession

log = structlog.get_logger()


class TaskLifecycle:
    """任务状态流转 + 终态结果落盘"""

    def __init__(self, store_group: StoreGroup, registry: StreamRegistry) -> None:
        self._stores = store_group
        self._registry = registry
        self._task_locks: dict[str, asyncio.Lock] = {}
        self._task_locks_guard = asyncio.Lock()

    @property
    def registry(self) -> StreamRegistry:
        return self._registry

    async def get_task(self, task_id: str) -> Task:
        """查询任务

        Raises:
            TaskNotFoundError: 任务不存在
        """
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def assign(self, task_id: str, agent: str) -> Task:
        """PENDING -> ASSIGNED，记录负责的 agent"""
        return await self._transition(
            task_id, TaskStatus.PENDING, TaskStatus.ASSIGNED, assigned_agent=agent
        )

    async def begin_execution(self, task_id: str) -> StreamSession:
        """ASSIGNED -> EXECUTING，并登记流式会话

        先占 registry 再改状态：并发调用中恰好一个拿到会话，其余收到 ConflictError，
        任务状态不受影响。

        Raises:
            ConflictError: 已有活跃会话
            InvalidTransitionError: 任务不在 ASSIGNED
            TaskNotFoundError: 任务不存在
        """
        session = self._registry.open(task_id)
        try:
            await self._transition(task_id, TaskStatus.ASSIGNED, TaskStatus.EXECUTING)
        except BaseException:
            self._registry.release(session)
            raise
        log.info(
            "task_execution_started",
            task_id=task_id,
            attempt_id=session.attempt_id,
        )
        return session

    @asynccontextmanager
    async def execution(self, task_id: str) -> AsyncIterator[StreamSession]:
        """作用域执行：退出时（完成、异常或取消）必定移除 registry 登记"""
        session = await self.begin_execution(task_id)
        try:
            yield session
        finally:
            self._registry.release(session)

    def release(self, session: StreamSession) -> None:
        self._registry.release(session)

    async def complete_with_result(self, task_id: str, content: str, tokens_used: int) -> Task:
        """EXECUTING/ASSIGNED -> COMPLETED，写入 result 与 tokens_used

        相同 (content, tokens_used) 的重复调用是 no-op，阻塞执行与流式完成
        竞争提交同一任务时不会重复计入 token。

        Raises:
            ValueError: tokens_used 为负
            InvalidTransitionError: 当前状态不允许完成，或已以不同结果完成
        """
        if tokens_used < 0:
            raise ValueError("tokens_used must be non-negative")

        lock = await self._get_task_lock(task_id)
        terminal = False
        try:
            async with lock:
                task = await self.get_task(task_id)
                if task.status == TaskStatus.COMPLETED:
                    terminal = True
                    if task.result == content and task.tokens_used == tokens_used:
                        log.debug("task_completion_duplicate", task_id=task_id)
                        return task
                    raise InvalidTransitionError(task_id, task.status, TaskStatus.COMPLETED)
                if not validate_transition(task.status, TaskStatus.COMPLETED):
                    raise InvalidTransitionError(task_id, task.status, TaskStatus.COMPLETED)

                now = datetime.now(UTC)
                async with transaction(self._stores.conn):
                    saved = await self._stores.task_store.save_result(
                        task_id,
                        content,
                        tokens_used,
                        expected_statuses=[task.status.value],
                        updated_at=now.isoformat(),
                    )
                    if not saved:
                        raise InvalidTransitionError(
                            task_id, task.status, TaskStatus.COMPLETED
                        )
                    project_tokens = await self._stores.project_store.recompute_tokens(
                        task.project_id
                    )
                terminal = True
        finally:
            # 终态任务不再流转，释放其 task 锁
            if terminal:
                await self.forget(task_id)

        log.info(
            "task_completed",
            task_id=task_id,
            from_status=task.status,
            result_len=len(content),
            tokens_used=tokens_used,
            project_tokens=project_tokens,
        )
        return task.model_copy(
            update={
                "status": TaskStatus.COMPLETED,
                "result": content,
                "tokens_used": tokens_used,
                "updated_at": now,
            }
        )

    async def fail(self, task_id: str, error: AgentPMError | BaseException) -> Task:
        """EXECUTING -> ASSIGNED（可重试）；错误只上报，不写入任务"""
        task = await self._transition(task_id, TaskStatus.EXECUTING, TaskStatus.ASSIGNED)
        log.warning(
            "task_execution_failed",
            task_id=task_id,
            error_type=type(error).__name__,
            error_code=getattr(error, "code", None),
        )
        return task

    async def recover_orphaned_executions(self) -> int:
        """把没有活跃会话的 EXECUTING 任务回退到 ASSIGNED

        会话从不持久化：进程重启后遗留的 EXECUTING 任务不可能再完成，只能重新执行。
        仅在 registry 为空（启动时）调用。
        """
        if len(self._registry):
            raise RuntimeError("recover_orphaned_executions requires an empty registry")
        async with transaction(self._stores.conn):
            count = await self._stores.task_store.reset_status(
                TaskStatus.EXECUTING.value,
                TaskStatus.ASSIGNED.value,
                updated_at=datetime.now(UTC).isoformat(),
            )
        if count:
            log.warning("orphaned_executions_recovered", count=count)
        return count

    async def _transition(
        self,
        task_id: str,
        from_status: TaskStatus,
        to_status: TaskStatus,
        assigned_agent: str | None = None,
    ) -> Task:
        lock = await self._get_task_lock(task_id)
        terminal = False
        try:
            async with lock:
                task = await self.get_task(task_id)
                terminal = task.status in TERMINAL_STATES
                if task.status != from_status or not validate_transition(task.status, to_status):
                    raise InvalidTransitionError(task_id, task.status, to_status)

                now = datetime.now(UTC)
                async with transaction(self._stores.conn):
                    updated = await self._stores.task_store.update_status(
                        task_id,
                        to_status.value,
                        expected_status=from_status.value,
                        updated_at=now.isoformat(),
                        assigned_agent=assigned_agent,
                    )
                if not updated:
                    raise InvalidTransitionError(task_id, task.status, to_status)
        finally:
            if terminal:
                await self.forget(task_id)

        log.debug(
            "task_status_changed",
            task_id=task_id,
            from_status=from_status,
            to_status=to_status,
        )
        update: dict = {"status": to_status, "updated_at": now}
        if assigned_agent is not None:
            update["assigned_agent"] = assigned_agent
        return task.model_copy(update=update)

    async def _get_task_lock(self, task_id: str) -> asyncio.Lock:
        """获取 task 级别锁，串行化同一任务的状态流转"""
        async with self._task_locks_guard:
            lock = self._task_locks.get(task_id)
            if lock is None:
                lock = asyncio.Lock()
                self._task_locks[task_id] = lock
            return lock

    async def forget(self, task_id: str) -> None:
        """释放 task 锁（任务已删除或进入终态）；锁被持有时保留"""
        async with self._task_locks_guard:
            lock = self._task_locks.get(task_id)
            if lock is not None and not lock.locked():
                del self._task_locks[task_id]

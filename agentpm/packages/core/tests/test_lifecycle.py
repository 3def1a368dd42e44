"""TaskLifecycle 单元测试

测试内容：
1. 状态流转与 CAS
2. begin_execution 与 registry 的配合（并发只有一个成功）
3. complete_with_result 幂等、result 不变量、项目 token 汇总
4. fail 回到 ASSIGNED，重启后恢复遗留 EXECUTING
"""

import asyncio

import pytest
from agentpm.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    ProducerError,
    TaskNotFoundError,
)
from agentpm.core.models import TaskStatus
from agentpm.core.streaming import StreamSession


class TestTransitions:
    async def test_assign(self, lifecycle, make_task):
        task = await make_task(TaskStatus.PENDING)
        assigned = await lifecycle.assign(task.task_id, "DevOps Engineer")
        assert assigned.status == TaskStatus.ASSIGNED
        stored = await lifecycle.get_task(task.task_id)
        assert stored.assigned_agent == "DevOps Engineer"

    async def test_assign_twice_rejected(self, lifecycle, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.assign(task.task_id, "Technical Lead")

    async def test_get_missing_task(self, lifecycle):
        with pytest.raises(TaskNotFoundError):
            await lifecycle.get_task("missing")


class TestBeginExecution:
    async def test_begin_execution(self, lifecycle, registry, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        session = await lifecycle.begin_execution(task.task_id)
        assert isinstance(session, StreamSession)
        assert task.task_id in registry
        stored = await lifecycle.get_task(task.task_id)
        assert stored.status == TaskStatus.EXECUTING

    async def test_not_assigned_leaves_registry_clean(self, lifecycle, registry, make_task):
        task = await make_task(TaskStatus.PENDING)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.begin_execution(task.task_id)
        assert task.task_id not in registry

    async def test_missing_task_leaves_registry_clean(self, lifecycle, registry):
        with pytest.raises(TaskNotFoundError):
            await lifecycle.begin_execution("missing")
        assert len(registry) == 0

    async def test_concurrent_begin_exactly_one_wins(self, lifecycle, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        results = await asyncio.gather(
            *(lifecycle.begin_execution(task.task_id) for _ in range(5)),
            return_exceptions=True,
        )
        sessions = [r for r in results if isinstance(r, StreamSession)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(sessions) == 1
        assert len(conflicts) == 4
        stored = await lifecycle.get_task(task.task_id)
        assert stored.status == TaskStatus.EXECUTING

    async def test_execution_scope_releases(self, lifecycle, registry, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        with pytest.raises(RuntimeError):
            async with lifecycle.execution(task.task_id):
                assert task.task_id in registry
                raise RuntimeError("boom")
        assert task.task_id not in registry


class TestCompleteWithResult:
    async def test_complete_from_executing(self, lifecycle, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        await lifecycle.begin_execution(task.task_id)
        done = await lifecycle.complete_with_result(task.task_id, "Hello world", 3)
        assert done.status == TaskStatus.COMPLETED
        assert done.result == "Hello world"
        assert done.tokens_used == 3

        stored = await lifecycle.get_task(task.task_id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.result == "Hello world"

    async def test_complete_from_assigned(self, lifecycle, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        done = await lifecycle.complete_with_result(task.task_id, "ok", 1)
        assert done.status == TaskStatus.COMPLETED

    async def test_complete_from_pending_rejected(self, lifecycle, make_task):
        task = await make_task(TaskStatus.PENDING)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.complete_with_result(task.task_id, "ok", 1)
        stored = await lifecycle.get_task(task.task_id)
        assert stored.result is None

    async def test_duplicate_completion_is_noop(self, lifecycle, store_group, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        await lifecycle.complete_with_result(task.task_id, "same", 5)
        again = await lifecycle.complete_with_result(task.task_id, "same", 5)
        assert again.result == "same"
        project = await store_group.project_store.get_project(task.project_id)
        assert project.tokens_used == 5

    async def test_conflicting_completion_rejected(self, lifecycle, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        await lifecycle.complete_with_result(task.task_id, "first", 5)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.complete_with_result(task.task_id, "second", 5)
        stored = await lifecycle.get_task(task.task_id)
        assert stored.result == "first"

    async def test_negative_tokens_rejected(self, lifecycle, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        with pytest.raises(ValueError):
            await lifecycle.complete_with_result(task.task_id, "x", -1)

    async def test_project_tokens_recomputed(self, lifecycle, store_group, make_task):
        first = await make_task(TaskStatus.ASSIGNED)
        second = await make_task(TaskStatus.ASSIGNED, project_id=first.project_id)
        await lifecycle.complete_with_result(first.task_id, "a", 7)
        await lifecycle.complete_with_result(second.task_id, "b", 5)
        project = await store_group.project_store.get_project(first.project_id)
        assert project.tokens_used == 12


class TestFailAndRecover:
    async def test_fail_returns_to_assigned(self, lifecycle, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        await lifecycle.begin_execution(task.task_id)
        failed = await lifecycle.fail(task.task_id, ProducerError("boom"))
        assert failed.status == TaskStatus.ASSIGNED
        stored = await lifecycle.get_task(task.task_id)
        assert stored.status == TaskStatus.ASSIGNED
        assert stored.result is None

    async def test_fail_outside_execution_rejected(self, lifecycle, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.fail(task.task_id, ProducerError("boom"))

    async def test_retry_after_failure(self, lifecycle, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        async with lifecycle.execution(task.task_id):
            await lifecycle.fail(task.task_id, ProducerError("boom"))
        async with lifecycle.execution(task.task_id):
            done = await lifecycle.complete_with_result(task.task_id, "second try", 2)
        assert done.status == TaskStatus.COMPLETED

    async def test_recover_orphaned_executions(self, lifecycle, make_task):
        orphan = await make_task(TaskStatus.EXECUTING)
        other = await make_task(TaskStatus.PENDING, project_id=orphan.project_id)
        assert await lifecycle.recover_orphaned_executions() == 1
        assert (await lifecycle.get_task(orphan.task_id)).status == TaskStatus.ASSIGNED
        assert (await lifecycle.get_task(other.task_id)).status == TaskStatus.PENDING

    async def test_recover_requires_empty_registry(self, lifecycle, registry):
        registry.open("t1")
        with pytest.raises(RuntimeError):
            await lifecycle.recover_orphaned_executions()

    async def test_forget_releases_lock(self, lifecycle, make_task):
        task = await make_task(TaskStatus.PENDING)
        await lifecycle.assign(task.task_id, "Software Engineer")
        await lifecycle.forget(task.task_id)
        assert task.task_id not in lifecycle._task_locks

    async def test_completed_task_lock_dropped(self, lifecycle, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        await lifecycle.begin_execution(task.task_id)
        assert task.task_id in lifecycle._task_locks

        await lifecycle.complete_with_result(task.task_id, "done", 2)
        assert task.task_id not in lifecycle._task_locks

        # 终态任务上的重复提交与非法流转都不会重新留下锁
        await lifecycle.complete_with_result(task.task_id, "done", 2)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.fail(task.task_id, ProducerError("late"))
        assert task.task_id not in lifecycle._task_locks

    async def test_live_task_lock_kept(self, lifecycle, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        await lifecycle.begin_execution(task.task_id)
        await lifecycle.fail(task.task_id, ProducerError("retry later"))
        assert task.task_id in lifecycle._task_locks

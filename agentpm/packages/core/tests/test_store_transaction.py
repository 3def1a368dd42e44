"""Store 与事务一致性单元测试

测试内容：
1. result 落盘 + 项目 token 汇总原子提交
2. 事务失败时整体回滚
3. CAS 更新只在状态匹配时生效
4. 删除项目级联删除任务
5. 拆解 token 计入项目汇总；旧库补列
"""

from datetime import UTC, datetime

import aiosqlite
import pytest
from agentpm.core.models import Project, Task, TaskStatus
from agentpm.core.store import create_store_group
from agentpm.core.store.sqlite_init import verify_wal_mode
from agentpm.core.store.transaction import transaction


class TestTransactionAtomicity:
    """事务一致性测试"""

    async def test_result_and_tokens_atomic_success(self, store_group, make_task):
        task = await make_task(TaskStatus.EXECUTING)
        now = datetime.now(UTC).isoformat()

        async with transaction(store_group.conn):
            saved = await store_group.task_store.save_result(
                task.task_id, "Hello world", 3, [TaskStatus.EXECUTING.value], now
            )
            total = await store_group.project_store.recompute_tokens(task.project_id)

        assert saved is True
        assert total == 3
        stored = await store_group.task_store.get_task(task.task_id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.result == "Hello world"
        project = await store_group.project_store.get_project(task.project_id)
        assert project.tokens_used == 3

    async def test_rollback_on_failure(self, store_group, make_task):
        task = await make_task(TaskStatus.EXECUTING)
        now = datetime.now(UTC).isoformat()

        with pytest.raises(RuntimeError):
            async with transaction(store_group.conn):
                await store_group.task_store.save_result(
                    task.task_id, "Hello", 2, [TaskStatus.EXECUTING.value], now
                )
                raise RuntimeError("simulated crash")

        stored = await store_group.task_store.get_task(task.task_id)
        assert stored.status == TaskStatus.EXECUTING
        assert stored.result is None

    async def test_result_status_check_enforced_by_schema(self, store_group, make_task):
        """数据库层同样拒绝 result 与 status 不一致的行"""
        import sqlite3

        task = await make_task(TaskStatus.ASSIGNED)
        with pytest.raises(sqlite3.IntegrityError):
            async with transaction(store_group.conn):
                await store_group.conn.execute(
                    "UPDATE tasks SET result = 'x' WHERE task_id = ?", (task.task_id,)
                )


class TestCompareAndSet:
    """CAS 状态更新"""

    async def test_update_status_matches(self, store_group, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        async with transaction(store_group.conn):
            ok = await store_group.task_store.update_status(
                task.task_id,
                TaskStatus.EXECUTING.value,
                expected_status=TaskStatus.ASSIGNED.value,
                updated_at=datetime.now(UTC).isoformat(),
            )
        assert ok is True

    async def test_update_status_mismatch(self, store_group, make_task):
        task = await make_task(TaskStatus.PENDING)
        async with transaction(store_group.conn):
            ok = await store_group.task_store.update_status(
                task.task_id,
                TaskStatus.EXECUTING.value,
                expected_status=TaskStatus.ASSIGNED.value,
                updated_at=datetime.now(UTC).isoformat(),
            )
        assert ok is False
        stored = await store_group.task_store.get_task(task.task_id)
        assert stored.status == TaskStatus.PENDING

    async def test_reset_status_bulk(self, store_group, make_task):
        a = await make_task(TaskStatus.EXECUTING)
        b = await make_task(TaskStatus.EXECUTING, project_id=a.project_id)
        c = await make_task(TaskStatus.ASSIGNED, project_id=a.project_id)
        async with transaction(store_group.conn):
            count = await store_group.task_store.reset_status(
                TaskStatus.EXECUTING.value,
                TaskStatus.ASSIGNED.value,
                datetime.now(UTC).isoformat(),
            )
        assert count == 2
        for t in (a, b, c):
            stored = await store_group.task_store.get_task(t.task_id)
            assert stored.status == TaskStatus.ASSIGNED


class TestProjectStore:
    """项目存储"""

    async def test_cascade_delete(self, store_group, make_task):
        task = await make_task(TaskStatus.ASSIGNED)
        async with transaction(store_group.conn):
            deleted = await store_group.project_store.delete_project(task.project_id)
        assert deleted is True
        assert await store_group.task_store.get_task(task.task_id) is None

    async def test_delete_missing_project(self, store_group):
        async with transaction(store_group.conn):
            deleted = await store_group.project_store.delete_project("missing")
        assert deleted is False

    async def test_list_tasks_in_creation_order(self, store_group, make_task):
        first = await make_task(TaskStatus.PENDING, description="first")
        second = await make_task(
            TaskStatus.PENDING, description="second", project_id=first.project_id
        )
        tasks = await store_group.task_store.list_tasks_for_project(first.project_id)
        assert [t.task_id for t in tasks] == [first.task_id, second.task_id]
        assert all(isinstance(t, Task) for t in tasks)

    async def test_wal_mode_enabled(self, store_group):
        assert await verify_wal_mode(store_group.conn) is True

    async def test_planning_tokens_in_aggregate(self, store_group, make_task):
        now = datetime.now(UTC)
        project = Project(
            project_id="p-plan",
            title="planned",
            planning_tokens=9,
            tokens_used=9,
            created_at=now,
            updated_at=now,
        )
        async with transaction(store_group.conn):
            await store_group.project_store.create_project(project)
        await make_task(TaskStatus.COMPLETED, project_id="p-plan")

        total = await store_group.project_store.recompute_tokens("p-plan")
        assert total == 10
        stored = await store_group.project_store.get_project("p-plan")
        assert stored.planning_tokens == 9

    async def test_old_database_gets_planning_tokens(self, tmp_path):
        db_path = tmp_path / "old.db"
        async with aiosqlite.connect(db_path) as conn:
            await conn.execute(
                "CREATE TABLE projects (project_id TEXT PRIMARY KEY, title TEXT NOT NULL, "
                "tokens_used INTEGER NOT NULL DEFAULT 0, created_at TEXT NOT NULL, "
                "updated_at TEXT NOT NULL)"
            )
            await conn.execute(
                "INSERT INTO projects VALUES ('p-old', 'old', 4, ?, ?)",
                (datetime.now(UTC).isoformat(), datetime.now(UTC).isoformat()),
            )
            await conn.commit()

        sg = await create_store_group(str(db_path))
        try:
            project = await sg.project_store.get_project("p-old")
            assert project.planning_tokens == 0
            assert project.tokens_used == 4
        finally:
            await sg.conn.close()

"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from agentpm.core.config import StreamingConfig
from agentpm.core.lifecycle import TaskLifecycle
from agentpm.core.models import Project, Task, TaskStatus
from agentpm.core.store import StoreGroup, create_store_group
from agentpm.core.store.transaction import transaction
from agentpm.core.streaming import StreamReconciler, StreamRegistry
from ulid import ULID


class FakeClock:
    """可手动推进的单调时钟"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def streaming_config() -> StreamingConfig:
    """小阈值配置；interval 足够长，测试内不会被定时任务打断"""
    return StreamingConfig(
        flush_chars=16,
        flush_interval_s=30.0,
        boundary_ratio=0.75,
        liveness_timeout_s=5.0,
    )


@pytest_asyncio.fixture
async def core_db_path(tmp_path: Path) -> Path:
    """核心层临时数据库路径"""
    return tmp_path / "core_test.db"


@pytest_asyncio.fixture
async def store_group(core_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """核心层已初始化 StoreGroup"""
    sg = await create_store_group(str(core_db_path))
    yield sg
    await sg.conn.close()


@pytest.fixture
def registry(streaming_config: StreamingConfig) -> StreamRegistry:
    return StreamRegistry(streaming_config)


@pytest.fixture
def lifecycle(store_group: StoreGroup, registry: StreamRegistry) -> TaskLifecycle:
    return TaskLifecycle(store_group, registry)


@pytest.fixture
def reconciler(lifecycle: TaskLifecycle, streaming_config: StreamingConfig) -> StreamReconciler:
    return StreamReconciler(lifecycle, streaming_config.liveness_timeout_s)


async def seed_task(
    store_group: StoreGroup,
    status: TaskStatus = TaskStatus.ASSIGNED,
    description: str = "Write a greeting",
    project_id: str | None = None,
    agent: str | None = "Software Engineer",
) -> Task:
    """直接写入一个任务（项目不存在时一并创建）"""
    now = datetime.now(UTC)
    if project_id is None:
        project_id = str(ULID())
    async with transaction(store_group.conn):
        if await store_group.project_store.get_project(project_id) is None:
            await store_group.project_store.create_project(
                Project(project_id=project_id, title="测试项目", created_at=now, updated_at=now)
            )
        task = Task(
            task_id=str(ULID()),
            project_id=project_id,
            description=description,
            status=status,
            result="done" if status == TaskStatus.COMPLETED else None,
            tokens_used=1 if status == TaskStatus.COMPLETED else None,
            assigned_agent=agent if status != TaskStatus.PENDING else None,
            created_at=now,
            updated_at=now,
        )
        await store_group.task_store.create_task(task)
    return task


@pytest.fixture
def make_task(store_group: StoreGroup):
    """返回 seed_task 的快捷方式（绑定当前 StoreGroup）"""

    async def _make(status: TaskStatus = TaskStatus.ASSIGNED, **kwargs) -> Task:
        return await seed_task(store_group, status, **kwargs)

    return _make

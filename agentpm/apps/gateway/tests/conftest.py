"""apps/gateway 测试配置 -- httpx ASGITransport + 脚本化 FragmentSource

app 通过 build_app_state 手动初始化（绕过 lifespan），FragmentSource 由测试脚本化。
"""

import asyncio
import json
import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from agentpm.core.config import StreamingConfig
from agentpm.core.store import StoreGroup, create_store_group
from agentpm.provider import ExecutionRequest, Fragment, StreamEnd, TokenUsage
from httpx import ASGITransport, AsyncClient


class ScriptedSource:
    """按脚本产出片段的 FragmentSource

    block=True 时产出全部片段后等待取消；error 非空时在片段之后抛出。
    """

    name = "scripted"

    def __init__(self, fragments: list[str], tokens: int = 0) -> None:
        self.fragments = list(fragments)
        self.tokens = tokens
        self.error: Exception | None = None
        self.block = False
        self.requests: list[ExecutionRequest] = []
        self.cancel_events: list[asyncio.Event] = []

    async def produce(self, request: ExecutionRequest, cancel_event: asyncio.Event):
        self.requests.append(request)
        self.cancel_events.append(cancel_event)
        for text in self.fragments:
            await asyncio.sleep(0)
            yield Fragment(text=text)
        if self.block:
            await cancel_event.wait()
            return
        if self.error is not None:
            raise self.error
        yield StreamEnd(
            token_usage=TokenUsage(completion_tokens=self.tokens, total_tokens=self.tokens),
            model_name="scripted",
        )


def _parse_sse(body: str) -> list[tuple[str, dict]]:
    """把 SSE 响应体解析为 (event, data) 列表，忽略心跳注释"""
    events = []
    for block in body.replace("\r\n", "\n").split("\n\n"):
        event_name = "message"
        data_lines = []
        for line in block.split("\n"):
            if line.startswith("event:"):
                event_name = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data_lines.append(line[len("data:"):].strip())
        if data_lines:
            events.append((event_name, json.loads("\n".join(data_lines))))
    return events


@pytest.fixture
def parse_sse():
    return _parse_sse


@pytest.fixture
def source() -> ScriptedSource:
    return ScriptedSource(["Hello", " world"], tokens=3)


@pytest.fixture
def streaming_config() -> StreamingConfig:
    return StreamingConfig(flush_chars=16, flush_interval_s=30.0, liveness_timeout_s=5.0)


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    sg = await create_store_group(str(tmp_path / "sqlite" / "test.db"))
    yield sg
    await sg.conn.close()


@pytest_asyncio.fixture
async def app(store_group: StoreGroup, source: ScriptedSource, streaming_config: StreamingConfig):
    """创建测试用 FastAPI app 实例（手动初始化 app.state）"""
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from agentpm.gateway.main import build_app_state, create_app

    application = create_app()
    build_app_state(application, store_group, source, streaming_config)
    yield application

    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def create_project(client: AsyncClient):
    """通过 API 创建项目，返回响应 JSON"""

    async def _create(*descriptions: str, agent: str | None = "Software Engineer", **extra):
        resp = await client.post(
            "/api/projects",
            json={
                "title": "测试项目",
                "tasks": [{"description": d, "agent": agent} for d in descriptions],
                **extra,
            },
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _create


@pytest.fixture
def wait_until():
    """轮询直到条件成立（最多约 2 秒）"""

    async def _wait(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _wait

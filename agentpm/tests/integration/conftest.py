"""集成测试共享 fixture -- 真实 EchoFragmentSource + 临时 SQLite"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from agentpm.core.config import StreamingConfig
from agentpm.core.store import create_store_group
from agentpm.provider import EchoFragmentSource
from httpx import ASGITransport, AsyncClient


@pytest.fixture
def echo_delay_s() -> float:
    return 0.0


@pytest_asyncio.fixture
async def integration_app(tmp_path: Path, echo_delay_s: float):
    """集成测试用 FastAPI app"""
    os.environ["AGENTPM_DB_PATH"] = str(tmp_path / "test.db")
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from agentpm.gateway.main import build_app_state, create_app

    app = create_app()
    store_group = await create_store_group(str(tmp_path / "test.db"))
    build_app_state(
        app,
        store_group,
        EchoFragmentSource(delay_s=echo_delay_s),
        StreamingConfig(flush_chars=32, flush_interval_s=0.05, liveness_timeout_s=5.0),
    )

    yield app

    await store_group.conn.close()
    os.environ.pop("AGENTPM_DB_PATH", None)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac

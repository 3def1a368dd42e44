"""Provider 包测试 fixtures"""

import asyncio

import pytest
from agentpm.provider.models import ExecutionRequest


@pytest.fixture
def sample_request() -> ExecutionRequest:
    """标准执行请求测试数据"""
    return ExecutionRequest(
        task_id="01JTASK0000000000000000001",
        description="Implement the login endpoint",
        agent="Software Engineer",
    )


@pytest.fixture
def cancel_event() -> asyncio.Event:
    return asyncio.Event()

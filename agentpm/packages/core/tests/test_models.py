"""Domain Models 单元测试

测试内容：
1. 枚举序列化/反序列化
2. Task 的 result/status 不变量
3. StreamEvent 构造与 SSE data 转换
"""

from datetime import UTC, datetime

import pytest
from agentpm.core.models import (
    Project,
    StreamEvent,
    StreamEventType,
    StreamSnapshot,
    Task,
    TaskStatus,
)
from pydantic import ValidationError


def _task(**overrides) -> Task:
    now = datetime.now(UTC)
    fields = {
        "task_id": "01JTASK00000000000000000001",
        "project_id": "01JPROJ0000000000000000001",
        "description": "部署 staging 环境",
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Task(**fields)


class TestEnums:
    """枚举序列化/反序列化测试"""

    def test_task_status_values(self):
        assert TaskStatus.PENDING == "PENDING"
        assert TaskStatus.ASSIGNED == "ASSIGNED"
        assert TaskStatus.EXECUTING == "EXECUTING"
        assert TaskStatus.COMPLETED == "COMPLETED"

    def test_task_status_from_string(self):
        assert TaskStatus("EXECUTING") == TaskStatus.EXECUTING

    def test_stream_event_type_values(self):
        """事件类型同时也是 SSE event 名"""
        assert [t.value for t in StreamEventType] == ["message", "complete", "error"]


class TestTaskModel:
    """Task 模型校验"""

    def test_default_status_is_pending(self):
        task = _task()
        assert task.status == TaskStatus.PENDING
        assert task.result is None
        assert task.tokens_used is None

    def test_completed_requires_result(self):
        with pytest.raises(ValidationError):
            _task(status=TaskStatus.COMPLETED)

    def test_result_only_when_completed(self):
        with pytest.raises(ValidationError):
            _task(status=TaskStatus.EXECUTING, result="partial")

    def test_completed_with_result(self):
        task = _task(status=TaskStatus.COMPLETED, result="Hello world", tokens_used=3)
        assert task.result == "Hello world"

    def test_empty_result_is_allowed(self):
        """空字符串是合法的最终结果"""
        task = _task(status=TaskStatus.COMPLETED, result="", tokens_used=0)
        assert task.result == ""

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValidationError):
            _task(status=TaskStatus.COMPLETED, result="x", tokens_used=-1)

    def test_project_tokens_default_zero(self):
        now = datetime.now(UTC)
        project = Project(project_id="p", title="t", created_at=now, updated_at=now)
        assert project.tokens_used == 0
        assert project.planning_tokens == 0


class TestStreamEvent:
    """StreamEvent 构造与 SSE 转换"""

    def test_snapshot_length(self):
        snap = StreamSnapshot(task_id="t1", content="你好 world", seq=2)
        assert snap.length == len("你好 world")

    def test_message_event(self):
        event = StreamEvent.message(StreamSnapshot(task_id="t1", content="Hello"))
        assert event.type == StreamEventType.MESSAGE
        assert not event.is_terminal
        assert event.to_sse_data() == {"task_id": "t1", "content": "Hello", "length": 5}

    def test_complete_event(self):
        event = StreamEvent.complete("t1", 12)
        assert event.is_terminal
        assert event.to_sse_data() == {"task_id": "t1", "tokens_used": 12}

    def test_failure_event(self):
        event = StreamEvent.failure("t1", "PRODUCER_ERROR", "boom")
        assert event.is_terminal
        assert event.to_sse_data() == {
            "task_id": "t1",
            "code": "PRODUCER_ERROR",
            "message": "boom",
        }

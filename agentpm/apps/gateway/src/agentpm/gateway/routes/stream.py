"""SSE 流式执行路由

GET /api/stream/task/{task_id}: 执行任务并以 SSE 推送缓冲后的完整内容 snapshot。

事件:
- message: {"task_id", "content", "length"}，content 为截至当前的完整内容
- complete: {"task_id", "tokens_used"}，随后流关闭
- error: {"task_id", "code", "message"}，随后流关闭
心跳由 sse-starlette 的 ping 注释行保活。客户端断开视为取消，任务回到 ASSIGNED。
"""

import json

import structlog
from agentpm.core.config import SSE_HEARTBEAT_INTERVAL
from agentpm.core.exceptions import AgentPMError
from agentpm.core.models import StreamEvent
from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from ..deps import get_stream_service
from ..services.stream_service import StreamService

log = structlog.get_logger()

router = APIRouter()


def _to_sse(event: StreamEvent) -> dict:
    """将 StreamEvent 转换为 sse-starlette 事件字典"""
    return {
        "event": event.type.value,
        "data": json.dumps(event.to_sse_data(), ensure_ascii=False),
    }


@router.get("/api/stream/task/{task_id}")
async def stream_task(
    task_id: str,
    stream_service: StreamService = Depends(get_stream_service),
):
    """SSE 流式执行端点

    前置检查（404 任务不存在 / 409 已有活跃流或状态不是 ASSIGNED）在响应头发出前完成；
    之后的失败以 error 事件告知客户端。
    """
    await stream_service.ensure_streamable(task_id)

    async def event_generator():
        try:
            async for event in stream_service.stream(task_id):
                yield _to_sse(event)
        except AgentPMError as e:
            # 预检查之后的并发冲突、liveness 超时等
            log.warning("stream_aborted", task_id=task_id, error_code=e.code)
            yield _to_sse(StreamEvent.failure(task_id, e.code, e.message))

    return EventSourceResponse(event_generator(), ping=SSE_HEARTBEAT_INTERVAL)

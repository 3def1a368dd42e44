"""TraceMiddleware -- 为任务操作绑定 trace_id

trace_id 从路径中的 task_id 生成，贯穿同一任务的执行、流式与归并日志。
"""

import re

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# /api/tasks/{task_id}[/...] 或 /api/stream/task/{task_id}；task_id 为 26 位 ULID
_TASK_PATH_RE = re.compile(r"/(?:tasks|task)/([0-9A-HJKMNP-TV-Z]{26})(?:/|$)")


def extract_task_id(path: str) -> str | None:
    """从请求路径提取 task_id"""
    match = _TASK_PATH_RE.search(path)
    return match.group(1) if match else None


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件 -- 为任务操作绑定 trace_id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        task_id = extract_task_id(request.url.path)
        if task_id:
            structlog.contextvars.bind_contextvars(
                trace_id=f"trace-{task_id}",
                task_id=task_id,
            )

        return await call_next(request)

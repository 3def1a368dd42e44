"""LoggingMiddleware -- 请求级日志

每个请求绑定 request_id（沿用客户端合法的 X-Request-ID，否则生成 ULID）。
普通响应在返回时记录耗时；SSE 响应返回时只完成了响应头，
因此包装 body_iterator，在流关闭时另记一条 sse_response_closed（总耗时、帧数、字节数）。
"""

import re
import time
from collections.abc import AsyncIterator, Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

REQUEST_ID_HEADER = "X-Request-ID"
_CLIENT_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._\-]{8,64}$")


def resolve_request_id(header_value: str | None) -> str:
    """客户端提供的 request_id 合法时沿用，否则生成新的 ULID"""
    if header_value and _CLIENT_REQUEST_ID_RE.match(header_value):
        return header_value
    return str(ULID())


def is_event_stream(response: Response) -> bool:
    return response.headers.get("content-type", "").startswith("text/event-stream")


async def observe_body(
    body: AsyncIterator[bytes],
    on_close: Callable[[int, int, bool], None],
) -> AsyncIterator[bytes]:
    """透传响应体，结束（含客户端断开）时回调 on_close(frames, nbytes, finished)"""
    frames = 0
    nbytes = 0
    finished = False
    try:
        async for chunk in body:
            frames += 1
            nbytes += len(chunk)
            yield chunk
        finished = True
    finally:
        on_close(frames, nbytes, finished)


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        start = time.monotonic()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        log = structlog.get_logger().bind(request_id=request_id, path=request.url.path)
        await log.ainfo("request_started")

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        if is_event_stream(response):
            await log.ainfo(
                "sse_response_opened",
                status_code=response.status_code,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

            def _closed(frames: int, nbytes: int, finished: bool) -> None:
                log.info(
                    "sse_response_closed",
                    frames=frames,
                    bytes=nbytes,
                    client_disconnected=not finished,
                    duration_ms=int((time.monotonic() - start) * 1000),
                )

            response.body_iterator = observe_body(response.body_iterator, _closed)
            return response

        await log.ainfo(
            "request_completed",
            status_code=response.status_code,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        return response

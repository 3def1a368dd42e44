"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、流式组件与 FragmentSource 初始化、
遗留 EXECUTING 任务回退、路由与异常处理注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from agentpm.core.config import StreamingConfig, get_db_path, load_streaming_config
from agentpm.core.exceptions import (
    AgentPMError,
    ConflictError,
    IllegalStateError,
    InvalidTransitionError,
    LivenessTimeoutError,
    NoActiveStreamError,
    ProducerError,
    ProjectNotFoundError,
    StreamCancelledError,
    TaskNotFoundError,
    TransportError,
)
from agentpm.core.lifecycle import TaskLifecycle
from agentpm.core.store import StoreGroup, create_store_group
from agentpm.core.streaming import StreamReconciler, StreamRegistry
from agentpm.provider import create_fragment_source, load_provider_config
from agentpm.provider.exceptions import UnknownAgentError
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import cancel, health, projects, stream, tasks
from .services.stream_service import StreamService

log = structlog.get_logger()

# 异常类型 -> HTTP 状态码（按 MRO 匹配，子类优先）
_STATUS_BY_ERROR: dict[type[AgentPMError], int] = {
    TaskNotFoundError: 404,
    ProjectNotFoundError: 404,
    ConflictError: 409,
    InvalidTransitionError: 409,
    NoActiveStreamError: 409,
    IllegalStateError: 409,
    StreamCancelledError: 409,
    LivenessTimeoutError: 504,
    TransportError: 502,
    ProducerError: 502,
}


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    """统一错误响应体 {"error": {"code", "message"}}"""
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


def status_for(error: AgentPMError) -> int:
    for cls in type(error).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return 500


async def agentpm_error_handler(request: Request, exc: AgentPMError) -> JSONResponse:
    status_code = status_for(exc)
    log.info(
        "request_failed",
        status_code=status_code,
        error_code=exc.code,
    )
    return error_response(status_code, exc.code, exc.message)


async def unknown_agent_handler(request: Request, exc: UnknownAgentError) -> JSONResponse:
    return error_response(422, "UNKNOWN_AGENT", str(exc))


def build_app_state(
    app: FastAPI,
    store_group: StoreGroup,
    source,
    streaming_config: StreamingConfig | None = None,
) -> None:
    """组装流式组件并挂到 app.state（lifespan 与测试共用）"""
    config = streaming_config or StreamingConfig()
    registry = StreamRegistry(config)
    lifecycle = TaskLifecycle(store_group, registry)
    reconciler = StreamReconciler(lifecycle, liveness_timeout_s=config.liveness_timeout_s)

    app.state.store_group = store_group
    app.state.streaming_config = config
    app.state.registry = registry
    app.state.lifecycle = lifecycle
    app.state.reconciler = reconciler
    app.state.fragment_source = source
    app.state.stream_service = StreamService(lifecycle, reconciler, source)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 和流式组件，关闭时清理连接"""
    store_group = await create_store_group(get_db_path())

    provider_config = load_provider_config()
    app.state.provider_config = provider_config
    source = create_fragment_source(provider_config)
    log.info(
        "fragment_source_initialized",
        mode=provider_config.llm_mode,
        proxy_url=provider_config.proxy_base_url if provider_config.llm_mode == "litellm" else None,
    )

    build_app_state(app, store_group, source, load_streaming_config())

    # 会话不持久化：上次进程遗留的 EXECUTING 任务只能回退
    await app.state.lifecycle.recover_orphaned_executions()

    yield

    # 关闭：取消仍在进行的流，等回退落盘后再关闭数据库连接
    registry: StreamRegistry = app.state.registry
    for task_id in registry.active_task_ids():
        registry.cancel(task_id)
    await app.state.reconciler.drain()
    await store_group.conn.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="agentpm Gateway",
        version="0.1.0",
        description="任务缓冲流式执行与状态归并 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()
    setup_logfire()

    app.add_exception_handler(AgentPMError, agentpm_error_handler)
    app.add_exception_handler(UnknownAgentError, unknown_agent_handler)

    # 注册路由
    app.include_router(projects.router, tags=["projects"])
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(cancel.router, tags=["cancel"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()

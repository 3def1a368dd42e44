"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、活跃流数量，
         profile=llm/full 时额外探测 LiteLLM Proxy。
"""

import aiosqlite
import structlog
from fastapi import APIRouter, Query, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="检查配置文件：core（默认）仅核心检查；llm/full 包含 LiteLLM Proxy 健康检查",
    ),
):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. active_streams: 当前活跃流数量（信息项，不影响就绪）
    3. litellm_proxy: 根据 profile 决定是否探测 Proxy
    """
    effective_profile = profile or "core"

    checks = {}
    all_ok = True

    # 1. SQLite 连通性检查
    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except (aiosqlite.Error, ValueError) as e:
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. 活跃流
    checks["active_streams"] = len(request.app.state.registry)

    # 3. LiteLLM Proxy 健康检查
    if effective_profile in ("llm", "full"):
        source = getattr(request.app.state, "fragment_source", None)
        health_check = getattr(source, "health_check", None)
        if health_check is not None:
            if await health_check():
                checks["litellm_proxy"] = "ok"
            else:
                checks["litellm_proxy"] = "unreachable"
                all_ok = False
        else:
            # Echo 模式：无 Proxy，跳过探测
            checks["litellm_proxy"] = "skipped"
    else:
        checks["litellm_proxy"] = "skipped"

    status_code = 200 if all_ok else 503
    status_text = "ready" if all_ok else "not_ready"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "profile": effective_profile,
            "checks": checks,
        },
    )

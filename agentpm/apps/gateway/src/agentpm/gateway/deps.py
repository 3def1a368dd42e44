"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store 与服务实例

实例通过 app.state 管理，在 lifespan（或测试中的 build_app_state）中初始化。
"""

from agentpm.core.lifecycle import TaskLifecycle
from agentpm.core.store import StoreGroup
from fastapi import Request

from .services.stream_service import StreamService
from .services.task_service import TaskService


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_lifecycle(request: Request) -> TaskLifecycle:
    """从 app.state 获取 TaskLifecycle 实例"""
    return request.app.state.lifecycle


def get_stream_service(request: Request) -> StreamService:
    """从 app.state 获取 StreamService 实例"""
    return request.app.state.stream_service


def get_task_service(request: Request) -> TaskService:
    """按请求构造 TaskService"""
    state = request.app.state
    return TaskService(state.store_group, state.lifecycle, state.stream_service)

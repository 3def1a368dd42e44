"""任务路由

GET  /api/tasks/{task_id}: 任务详情
POST /api/tasks/{task_id}/assign: PENDING -> ASSIGNED（未指定 agent 时自动委派）
POST /api/tasks/{task_id}/execute: 阻塞执行，返回最终结果
GET  /api/tasks/{task_id}/view: 流式进行中的临时内容
"""

from agentpm.core.models import Task
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_stream_service, get_task_service
from ..services.stream_service import StreamService
from ..services.task_service import TaskService

router = APIRouter()


class TaskView(BaseModel):
    """任务响应体"""

    task_id: str
    project_id: str
    description: str
    status: str
    assigned_agent: str | None
    result: str | None
    tokens_used: int | None
    created_at: str
    updated_at: str

    @classmethod
    def from_task(cls, task: Task) -> "TaskView":
        return cls(
            task_id=task.task_id,
            project_id=task.project_id,
            description=task.description,
            status=task.status.value,
            assigned_agent=task.assigned_agent,
            result=task.result,
            tokens_used=task.tokens_used,
            created_at=task.created_at.isoformat(),
            updated_at=task.updated_at.isoformat(),
        )


class AssignRequest(BaseModel):
    agent: str | None = None


class StreamingView(BaseModel):
    """归并端的临时视图"""

    task_id: str
    status: str
    streaming: bool
    content: str
    length: int


@router.get("/api/tasks/{task_id}", response_model=TaskView)
async def get_task(task_id: str, service: TaskService = Depends(get_task_service)):
    return TaskView.from_task(await service.get_task(task_id))


@router.post("/api/tasks/{task_id}/assign", response_model=TaskView)
async def assign_task(
    task_id: str,
    body: AssignRequest | None = None,
    service: TaskService = Depends(get_task_service),
):
    """指派任务；非 PENDING 返回 409"""
    agent = body.agent if body is not None else None
    return TaskView.from_task(await service.assign_task(task_id, agent))


@router.post("/api/tasks/{task_id}/execute", response_model=TaskView)
async def execute_task(
    task_id: str,
    stream_service: StreamService = Depends(get_stream_service),
):
    """阻塞执行：与同一任务的活跃流互斥（409），生成失败返回 502"""
    return TaskView.from_task(await stream_service.execute(task_id))


@router.get("/api/tasks/{task_id}/view", response_model=StreamingView)
async def get_streaming_view(
    task_id: str,
    service: TaskService = Depends(get_task_service),
    stream_service: StreamService = Depends(get_stream_service),
):
    """流式中返回最新累积内容；已完成返回 result；其余为空"""
    task = await service.get_task(task_id)
    content = stream_service.reconciler.view(task_id)
    streaming = content is not None
    if content is None:
        content = task.result or ""
    return StreamingView(
        task_id=task_id,
        status=task.status.value,
        streaming=streaming,
        content=content,
        length=len(content),
    )

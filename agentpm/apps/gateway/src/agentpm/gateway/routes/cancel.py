"""任务取消路由

POST /api/tasks/{task_id}/cancel: 取消该任务的活跃流。
- 202: 已请求取消（任务随后回到 ASSIGNED）
- 404: 任务不存在
- 409: 任务没有活跃的流
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from starlette.responses import JSONResponse

from ..deps import get_stream_service
from ..services.stream_service import StreamService

router = APIRouter()


class CancelResponse(BaseModel):
    """取消请求响应"""

    task_id: str
    cancelled: bool


@router.post("/api/tasks/{task_id}/cancel")
async def cancel_task(
    task_id: str,
    stream_service: StreamService = Depends(get_stream_service),
):
    """关闭任务的流式通道；状态回退由流的消费端异步完成"""
    await stream_service.cancel(task_id)
    return JSONResponse(
        status_code=202,
        content=CancelResponse(task_id=task_id, cancelled=True).model_dump(),
    )

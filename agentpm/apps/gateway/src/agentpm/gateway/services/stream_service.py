"""StreamService -- 流式执行编排

一次执行 = lifecycle.execution() 作用域内的两个协程：
1. 生产端 _pump: FragmentSource -> StreamBuffer（片段累积 + flush）
2. 消费端: StreamReconciler 读取 StreamChannel，SSE 端点逐个转发或阻塞等待 complete

生产端失败只通过 buffer.fail() 变成 error 事件，由消费端归并为任务状态。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing

import structlog
from agentpm.core.exceptions import (
    ConflictError,
    IllegalStateError,
    InvalidTransitionError,
    NoActiveStreamError,
    ProducerError,
)
from agentpm.core.lifecycle import TaskLifecycle
from agentpm.core.models import StreamEvent, Task, TaskStatus
from agentpm.core.streaming import StreamReconciler, StreamSession
from agentpm.provider import ExecutionRequest, ProviderError, StreamEnd, delegate_agent

log = structlog.get_logger()


def producer_error(e: ProviderError, action: str = "Fragment source") -> ProducerError:
    """ProviderError -> 对外的 ProducerError；只暴露异常类型与是否可重试，原始文本只进日志"""
    return ProducerError(
        f"{action} failed: {type(e).__name__} (recoverable={str(e.recoverable).lower()})"
    )


class StreamService:
    """流式执行服务（app 级单例，持有 FragmentSource）"""

    def __init__(
        self,
        lifecycle: TaskLifecycle,
        reconciler: StreamReconciler,
        source,
    ) -> None:
        self._lifecycle = lifecycle
        self._reconciler = reconciler
        self._source = source

    @property
    def reconciler(self) -> StreamReconciler:
        return self._reconciler

    @property
    def source(self):
        return self._source

    async def ensure_streamable(self, task_id: str) -> Task:
        """执行前置检查，便于在响应头发出前返回 404/409

        Raises:
            TaskNotFoundError: 任务不存在
            ConflictError: 已有活跃会话
            InvalidTransitionError: 任务不在 ASSIGNED
        """
        task = await self._lifecycle.get_task(task_id)
        if task_id in self._lifecycle.registry:
            raise ConflictError(task_id)
        if task.status != TaskStatus.ASSIGNED:
            raise InvalidTransitionError(task_id, task.status, TaskStatus.EXECUTING)
        return task

    async def stream(self, task_id: str) -> AsyncIterator[StreamEvent]:
        """执行任务并逐个产出流式事件（message... 然后 complete 或 error）

        迭代在终止事件前被关闭（客户端断开）视为取消，任务回到 ASSIGNED。
        """
        request = await self._build_request(task_id)
        async with self._lifecycle.execution(task_id) as session:
            producer = self._start_producer(session, request)
            try:
                async with aclosing(self._reconciler.watch(session.channel)) as events:
                    async for event in events:
                        yield event
            finally:
                if not producer.done():
                    producer.cancel()

    async def execute(self, task_id: str) -> Task:
        """阻塞执行：内部走同一条流式管线，等待 complete 后返回已提交的 Task

        Raises:
            ConflictError: 已有活跃会话
            ProducerError / TransportError / LivenessTimeoutError: 执行失败，任务回到 ASSIGNED
        """
        task = await self.ensure_streamable(task_id)
        request = self._request_for(task)
        async with self._lifecycle.execution(task_id) as session:
            producer = self._start_producer(session, request)
            try:
                return await self._reconciler.consume(session.channel)
            finally:
                if not producer.done():
                    producer.cancel()

    async def cancel(self, task_id: str) -> None:
        """按 task_id 取消活跃会话（消费端关闭通道）

        Raises:
            TaskNotFoundError: 任务不存在
            NoActiveStreamError: 没有活跃会话或已在收尾
        """
        await self._lifecycle.get_task(task_id)
        if not self._lifecycle.registry.cancel(task_id):
            raise NoActiveStreamError(task_id)
        log.info("stream_cancel_requested", task_id=task_id)

    async def _build_request(self, task_id: str) -> ExecutionRequest:
        return self._request_for(await self._lifecycle.get_task(task_id))

    @staticmethod
    def _request_for(task: Task) -> ExecutionRequest:
        return ExecutionRequest(
            task_id=task.task_id,
            description=task.description,
            agent=task.assigned_agent or delegate_agent(task.description),
        )

    def _start_producer(self, session: StreamSession, request: ExecutionRequest) -> asyncio.Task:
        """启动生产端协程；其失败只经由 buffer 变成 error 事件"""
        producer = asyncio.create_task(
            self._pump(session, request),
            name=f"stream-producer-{session.task_id}",
        )
        session.attach_producer(producer)
        return producer

    async def _pump(self, session: StreamSession, request: ExecutionRequest) -> None:
        """FragmentSource -> StreamBuffer"""
        buffer = session.buffer
        buffer.start()
        end: StreamEnd | None = None
        try:
            async with aclosing(
                self._source.produce(request, session.cancel_event)
            ) as fragments:
                async for item in fragments:
                    if isinstance(item, StreamEnd):
                        end = item
                        break
                    await buffer.append(item.text)

            if end is None:
                if session.cancel_event.is_set():
                    log.info("stream_producer_cancelled", task_id=request.task_id)
                    return
                raise ProducerError(
                    f"Fragment source for task {request.task_id} ended without completion"
                )
            await buffer.complete(end.total_tokens)

        except IllegalStateError:
            # 消费端已取消，缓冲区不再接受片段
            log.info(
                "stream_producer_stopped",
                task_id=request.task_id,
                fragments=buffer.fragment_count,
            )
        except asyncio.CancelledError:
            log.info("stream_producer_cancelled", task_id=request.task_id)
            raise
        except ProducerError as e:
            await buffer.fail(e)
        except ProviderError as e:
            log.warning(
                "stream_producer_failed",
                task_id=request.task_id,
                error_type=type(e).__name__,
                recoverable=e.recoverable,
                exc_info=True,
            )
            await buffer.fail(producer_error(e))
        except Exception as e:
            log.error(
                "stream_producer_crashed",
                task_id=request.task_id,
                error_type=type(e).__name__,
                exc_info=True,
            )
            await buffer.fail(ProducerError(f"Fragment source failed: {type(e).__name__}"))
        finally:
            await buffer.aclose()

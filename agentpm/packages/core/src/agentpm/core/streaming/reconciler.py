"""StreamReconciler -- 消费端：合并流式事件并收敛到唯一终态

每个任务维护一份临时视图（最新完整内容）：
- message: 仅当新 snapshot 比已知内容更长时替换（重复/乱序的旧 snapshot 被忽略，视图从不回退）
- complete: 以视图内容调用 complete_with_result，然后丢弃视图
- error / liveness 超时 / 消费端取消: 调用 fail，丢弃视图，部分内容不落盘
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing

import structlog

from ..exceptions import (
    AgentPMError,
    InvalidTransitionError,
    LivenessTimeoutError,
    StreamCancelledError,
    TaskNotFoundError,
    error_from_descriptor,
)
from ..models import StreamEvent, StreamEventType, StreamSnapshot, Task
from .channel import StreamChannel

log = structlog.get_logger()


class StreamReconciler:
    """把 StreamChannel 事件归并进 TaskLifecycle"""

    def __init__(self, lifecycle, liveness_timeout_s: float | None = None) -> None:
        self._lifecycle = lifecycle
        self._liveness_timeout_s = liveness_timeout_s
        self._views: dict[str, str] = {}
        # 被 shield 的失败收尾任务，保持引用直到完成
        self._pending_cleanups: set[asyncio.Task] = set()

    def track(self, task_id: str) -> None:
        """开始跟踪任务视图（之后到达的 snapshot 才会被接受）"""
        self._views.setdefault(task_id, "")

    def view(self, task_id: str) -> str | None:
        """任务的当前临时内容；未在流式中返回 None"""
        return self._views.get(task_id)

    def tracked_task_ids(self) -> list[str]:
        return list(self._views)

    def apply_snapshot(self, snapshot: StreamSnapshot) -> bool:
        """按长度做 last-writer-wins 替换

        Returns:
            True 如果视图被更新
        """
        current = self._views.get(snapshot.task_id)
        if current is None:
            log.debug("stream_snapshot_untracked", task_id=snapshot.task_id)
            return False
        if snapshot.length <= len(current):
            return False
        self._views[snapshot.task_id] = snapshot.content
        return True

    async def apply(self, event: StreamEvent) -> Task | None:
        """应用单个事件

        Returns:
            complete 事件提交后的 Task，其余事件返回 None
        """
        if event.type == StreamEventType.MESSAGE:
            self.apply_snapshot(event.snapshot)
            return None

        task_id = event.task_id
        if event.type == StreamEventType.COMPLETE:
            content = self._views.get(task_id)
            if content is None:
                # 未跟踪的任务没有可提交的内容
                log.warning("stream_complete_untracked", task_id=task_id)
                return None
            try:
                task = await self._lifecycle.complete_with_result(
                    task_id, content, event.tokens_used or 0
                )
            finally:
                self._views.pop(task_id, None)
            return task

        await self._fail(task_id, error_from_descriptor(event.error.code, event.error.message))
        return None

    async def watch(self, channel: StreamChannel) -> AsyncIterator[StreamEvent]:
        """应用并逐个产出事件（SSE 端点使用）

        迭代在终止事件之前被关闭视为消费端取消，任务回到 ASSIGNED。

        Raises:
            LivenessTimeoutError: 窗口内未收到事件（任务已回到 ASSIGNED）
        """
        async with aclosing(self._run(channel)) as run:
            async for event, _ in run:
                yield event

    async def consume(self, channel: StreamChannel) -> Task:
        """消费到终止事件并返回提交后的 Task（阻塞执行路径使用）

        Raises:
            ProducerError / TransportError: 流以 error 事件结束
            LivenessTimeoutError: 窗口内未收到事件
            StreamCancelledError: 通道在终止事件前被关闭
        """
        async with aclosing(self._run(channel)) as run:
            async for event, outcome in run:
                if event.type == StreamEventType.COMPLETE:
                    return outcome
                if event.type == StreamEventType.ERROR:
                    raise error_from_descriptor(event.error.code, event.error.message)
        raise StreamCancelledError(
            f"Stream for task {channel.task_id} closed before completion"
        )

    def abandon(self, channel: StreamChannel) -> bool:
        """消费端主动取消：关闭通道，正在进行的 watch/consume 负责把任务回退

        Returns:
            True 如果本次调用构成取消
        """
        return channel.close()

    async def drain(self, timeout_s: float = 5.0) -> int:
        """等待失败收尾全部落盘（关闭数据库连接前调用）

        取消会话后，消费端要先被调度才会登记收尾任务，因此同时等待视图清空。

        Returns:
            超时后仍未收敛的任务数
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        while self._views or self._pending_cleanups:
            remaining_s = deadline - loop.time()
            if remaining_s <= 0:
                break
            if self._pending_cleanups:
                await asyncio.wait(set(self._pending_cleanups), timeout=remaining_s)
            else:
                await asyncio.sleep(min(0.01, remaining_s))

        remaining = len(self._views)
        if remaining:
            log.warning("reconciler_drain_timeout", remaining=remaining)
        return remaining

    async def _run(
        self, channel: StreamChannel
    ) -> AsyncIterator[tuple[StreamEvent, Task | None]]:
        task_id = channel.task_id
        self.track(task_id)
        settled = False
        try:
            async for event in channel.events(self._liveness_timeout_s):
                outcome = await self.apply(event)
                settled = event.is_terminal
                yield event, outcome
        except LivenessTimeoutError as e:
            settled = True
            channel.close()
            await self._settle_failure(task_id, e)
            raise
        finally:
            if not settled:
                channel.close()
                await self._settle_failure(
                    task_id,
                    StreamCancelledError(f"Stream for task {task_id} was cancelled"),
                )

    async def _settle_failure(self, task_id: str, error: AgentPMError) -> None:
        """在 shield 下完成回退，外层被取消时收尾仍会执行完"""
        cleanup = asyncio.ensure_future(self._fail(task_id, error))
        self._pending_cleanups.add(cleanup)
        cleanup.add_done_callback(self._pending_cleanups.discard)
        await asyncio.shield(cleanup)

    async def _fail(self, task_id: str, error: AgentPMError) -> None:
        try:
            await self._lifecycle.fail(task_id, error)
        except (InvalidTransitionError, TaskNotFoundError) as e:
            # 任务已被其他路径收敛（例如阻塞执行已完成，或项目已删除）
            log.info(
                "stream_failure_not_applied",
                task_id=task_id,
                error_code=error.code,
                reason=e.code,
            )
        finally:
            self._views.pop(task_id, None)

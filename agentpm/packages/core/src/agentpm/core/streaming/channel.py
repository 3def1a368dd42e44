"""StreamChannel -- 单个会话的 snapshot 投递通道

服务端通过 publish/finish/abort 写入，唯一的消费端通过 receive/events 读取。
待投递的 snapshot 是一个“最新值”槽位而非队列：慢消费端只会收到更少、更大的更新，
生产端永远不会被阻塞，也不会积压。
"""

import asyncio
from collections.abc import AsyncIterator, Callable

import structlog

from ..exceptions import AgentPMError, LivenessTimeoutError, TransportError
from ..models.stream import StreamEvent, StreamSnapshot

log = structlog.get_logger()


class StreamChannel:
    """进程内 push 通道：message / complete / error 三类事件"""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        self._pending: StreamSnapshot | None = None
        self._terminal: StreamEvent | None = None
        self._terminal_delivered = False
        self._ready = asyncio.Event()
        self._closed = False
        self._cancelled = False
        self._cancel_callbacks: list[Callable[[], None]] = []
        self.published_count = 0
        self.delivered_count = 0

    @property
    def closed(self) -> bool:
        """服务端不再接受写入"""
        return self._closed

    @property
    def cancelled(self) -> bool:
        """消费端在终止事件之前关闭了通道"""
        return self._cancelled

    @property
    def coalesced_count(self) -> int:
        """被更新的 snapshot 覆盖、从未投递的 snapshot 数"""
        pending = 1 if self._pending is not None else 0
        return self.published_count - self.delivered_count - pending

    # ---- 服务端 ----

    def publish(self, snapshot: StreamSnapshot) -> None:
        """写入最新 snapshot，覆盖尚未被取走的旧值"""
        self._ensure_writable()
        self._pending = snapshot
        self.published_count += 1
        self._ready.set()

    def finish(self, tokens_used: int) -> None:
        """写入 complete 终止事件，之后通道关闭"""
        self._ensure_writable()
        self._terminal = StreamEvent.complete(self.task_id, tokens_used)
        self._closed = True
        self._ready.set()

    def abort(self, error: AgentPMError) -> None:
        """写入 error 终止事件，之后通道关闭"""
        self._ensure_writable()
        self._terminal = StreamEvent.failure(self.task_id, error.code, error.message)
        self._closed = True
        self._ready.set()

    def _ensure_writable(self) -> None:
        if self._closed:
            raise TransportError(f"Stream channel for task {self.task_id} is closed")

    # ---- 消费端 ----

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """注册取消回调；通道已被取消时立即执行"""
        if self._cancelled:
            callback()
            return
        self._cancel_callbacks.append(callback)

    def close(self) -> bool:
        """消费端关闭通道

        终止事件投递之前关闭视为取消：同步执行取消回调（停止 flush、通知生产端）。

        Returns:
            True 如果本次关闭构成取消
        """
        if self._cancelled or self._terminal_delivered:
            return False

        self._cancelled = True
        self._closed = True
        self._pending = None
        self._ready.set()
        log.info(
            "stream_channel_cancelled",
            task_id=self.task_id,
            published=self.published_count,
            delivered=self.delivered_count,
        )
        callbacks, self._cancel_callbacks = self._cancel_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                log.error(
                    "stream_cancel_callback_failed",
                    task_id=self.task_id,
                    error_type=type(e).__name__,
                )
        return True

    async def receive(self, timeout: float | None = None) -> StreamEvent | None:
        """按发出顺序取下一个事件

        待投递的 snapshot 总是先于终止事件返回。

        Args:
            timeout: liveness 窗口（秒），None 表示无限等待

        Returns:
            下一个事件；通道已关闭且无剩余事件时返回 None

        Raises:
            LivenessTimeoutError: 窗口内没有任何事件
        """
        while True:
            if self._cancelled:
                return None
            if self._pending is not None:
                snapshot, self._pending = self._pending, None
                self.delivered_count += 1
                return StreamEvent.message(snapshot)
            if self._terminal is not None and not self._terminal_delivered:
                self._terminal_delivered = True
                return self._terminal
            if self._closed:
                return None

            self._ready.clear()
            try:
                await asyncio.wait_for(self._ready.wait(), timeout=timeout)
            except TimeoutError:
                raise LivenessTimeoutError(self.task_id, timeout or 0) from None

    async def events(self, liveness_timeout_s: float | None = None) -> AsyncIterator[StreamEvent]:
        """事件迭代器，终止事件之后结束"""
        while (event := await self.receive(liveness_timeout_s)) is not None:
            yield event
            if event.is_terminal:
                return

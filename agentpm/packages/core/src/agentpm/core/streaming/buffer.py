"""StreamBuffer -- 片段累积与 flush 策略

把高频的片段序列转换为低频的完整内容 snapshot。满足以下任一条件即 flush：

1. size: 自上次 flush 以来累积的长度达到 flush_chars
2. interval: 距上次 flush 超过 flush_interval_s（由会话内定时任务驱动，append 时也会检查）
3. boundary: 片段落在空白/句末边界，且累积长度已达到 flush_chars * boundary_ratio，
   避免在单词中间切分

所有 flush 路径共用一把 asyncio.Lock，定时触发与 size 触发不会发出重叠的 snapshot。
"""

import asyncio
import time
from collections.abc import Callable

import structlog

from ..config import StreamingConfig
from ..exceptions import AgentPMError, IllegalStateError, TransportError
from ..models.stream import StreamSnapshot
from .channel import StreamChannel

log = structlog.get_logger()

_SENTENCE_END = frozenset(".!?;:。！？；：")


def ends_on_boundary(fragment: str) -> bool:
    """片段是否结束在空白或句末标点上"""
    if not fragment:
        return False
    last = fragment[-1]
    return last.isspace() or last in _SENTENCE_END


class StreamBuffer:
    """单个进行中任务流的累积缓冲区"""

    def __init__(
        self,
        task_id: str,
        channel: StreamChannel,
        config: StreamingConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.task_id = task_id
        self._channel = channel
        self._config = config
        self._clock = clock

        self._parts: list[str] = []
        self._length = 0
        self._flushed_length = 0
        self._seq = 0
        self._fragment_count = 0
        self._last_flush_at = clock()

        self._lock = asyncio.Lock()
        self._closed = False
        self._timer: asyncio.Task | None = None

        channel.on_cancel(self.cancel)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def fragment_count(self) -> int:
        return self._fragment_count

    @property
    def last_flush_at(self) -> float:
        return self._last_flush_at

    @property
    def snapshot_count(self) -> int:
        return self._seq

    @property
    def pending_length(self) -> int:
        """自上次 flush 以来尚未发出的字符数"""
        return self._length - self._flushed_length

    def current_snapshot(self) -> str:
        """截至当前的完整累积内容"""
        if len(self._parts) > 1:
            self._parts = ["".join(self._parts)]
        return self._parts[0] if self._parts else ""

    def start(self) -> None:
        """启动 interval flush 定时任务"""
        if self._timer is None and not self._closed:
            self._timer = asyncio.create_task(
                self._flush_timer(), name=f"stream-flush-{self.task_id}"
            )

    async def append(self, fragment: str) -> None:
        """追加一个片段，必要时触发 flush

        Raises:
            IllegalStateError: 缓冲区已关闭（完成、失败或被取消）
        """
        async with self._lock:
            if self._closed:
                raise IllegalStateError(
                    f"Stream buffer for task {self.task_id} no longer accepts fragments"
                )
            if not fragment:
                return
            self._parts.append(fragment)
            self._length += len(fragment)
            self._fragment_count += 1

            reason = self._flush_reason(fragment)
            if reason is not None:
                self._flush_locked(reason)

    async def complete(self, total_tokens: int) -> None:
        """发出最后一个 snapshot（即使未达阈值）和 complete 事件，随后关闭

        Raises:
            IllegalStateError: 缓冲区已关闭
        """
        async with self._lock:
            if self._closed:
                raise IllegalStateError(
                    f"Stream buffer for task {self.task_id} is already closed"
                )
            self._closed = True
            if self.pending_length > 0 or self._seq == 0:
                self._flush_locked("final")
            self._channel.finish(total_tokens)
        self._stop_timer()
        log.info(
            "stream_buffer_completed",
            task_id=self.task_id,
            fragments=self._fragment_count,
            snapshots=self._seq,
            content_len=self._length,
            tokens_used=total_tokens,
        )

    async def fail(self, error: AgentPMError) -> None:
        """发出 error 事件并关闭；不保证先 flush 剩余内容"""
        async with self._lock:
            if self._closed:
                log.debug("stream_buffer_fail_after_close", task_id=self.task_id)
                return
            self._closed = True
            self._channel.abort(error)
        self._stop_timer()
        log.warning(
            "stream_buffer_failed",
            task_id=self.task_id,
            error_code=error.code,
            fragments=self._fragment_count,
        )

    def cancel(self) -> None:
        """同步停止：不再 flush、不再接受片段、不发任何事件"""
        self._closed = True
        self._stop_timer()

    async def aclose(self) -> None:
        """关闭并等待定时任务退出"""
        self.cancel()
        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task():
            try:
                await timer
            except asyncio.CancelledError:
                pass

    def _flush_reason(self, fragment: str) -> str | None:
        pending = self.pending_length
        threshold = self._config.flush_chars
        if pending >= threshold:
            return "size"
        if self._clock() - self._last_flush_at >= self._config.flush_interval_s:
            return "interval"
        if pending >= threshold * self._config.boundary_ratio and ends_on_boundary(fragment):
            return "boundary"
        return None

    def _flush_locked(self, reason: str) -> None:
        """发出当前完整内容（调用方持有锁）"""
        snapshot = StreamSnapshot(
            task_id=self.task_id,
            content=self.current_snapshot(),
            seq=self._seq,
        )
        self._channel.publish(snapshot)
        self._seq += 1
        self._flushed_length = self._length
        self._last_flush_at = self._clock()
        log.debug(
            "stream_snapshot_flushed",
            task_id=self.task_id,
            reason=reason,
            seq=snapshot.seq,
            snapshot_len=snapshot.length,
        )

    async def _flush_timer(self) -> None:
        interval = self._config.flush_interval_s
        while not self._closed:
            delay = self._last_flush_at + interval - self._clock()
            if delay > 0:
                await asyncio.sleep(delay)
                continue
            async with self._lock:
                if self._closed:
                    return
                if self.pending_length == 0:
                    # 无新内容：重新开始计时窗口
                    self._last_flush_at = self._clock()
                    continue
                try:
                    self._flush_locked("interval")
                except TransportError:
                    log.warning("stream_timer_flush_rejected", task_id=self.task_id)
                    self._closed = True
                    return

    def _stop_timer(self) -> None:
        timer = self._timer
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

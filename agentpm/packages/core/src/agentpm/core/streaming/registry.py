"""StreamRegistry -- task_id -> 活跃 StreamSession 映射

每个任务同一时刻最多一个活跃会话。registry 是显式持有的对象（由 TaskLifecycle 与
gateway 共享），不是模块级单例；插入/移除通过 session() 作用域保证在所有退出路径上成对出现。
"""

import asyncio
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

import structlog
from ulid import ULID

from ..config import StreamingConfig
from ..exceptions import ConflictError
from .buffer import StreamBuffer
from .channel import StreamChannel

log = structlog.get_logger()


class StreamSession:
    """一次流式执行（task + attempt）的临时状态，从不持久化"""

    def __init__(self, task_id: str, config: StreamingConfig) -> None:
        self.task_id = task_id
        self.attempt_id = str(ULID())
        self.started_at = datetime.now(UTC)
        self.channel = StreamChannel(task_id)
        self.buffer = StreamBuffer(task_id, self.channel, config)
        # FragmentSource 的取消钩子
        self.cancel_event = asyncio.Event()
        self._producer: asyncio.Task | None = None
        self.channel.on_cancel(self._on_cancel)

    @property
    def is_open(self) -> bool:
        return not self.channel.closed

    @property
    def fragment_count(self) -> int:
        return self.buffer.fragment_count

    @property
    def last_flush_at(self) -> float:
        return self.buffer.last_flush_at

    def attach_producer(self, task: asyncio.Task) -> None:
        """绑定生产端 asyncio.Task，取消时一并 cancel"""
        self._producer = task
        if self.channel.cancelled:
            task.cancel()

    def cancel(self) -> bool:
        """以消费端身份关闭通道

        Returns:
            True 如果本次调用触发了取消
        """
        return self.channel.close()

    def _on_cancel(self) -> None:
        self.cancel_event.set()
        producer = self._producer
        if producer is not None and not producer.done():
            producer.cancel()


class StreamRegistry:
    """进程内活跃会话表

    映射本身由 threading.Lock 保护：检查与插入在同一临界区内完成，
    并发 open() 同一 task_id 时恰好一个成功。
    """

    def __init__(self, config: StreamingConfig | None = None) -> None:
        self._config = config or StreamingConfig()
        self._sessions: dict[str, StreamSession] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> StreamingConfig:
        return self._config

    def open(self, task_id: str) -> StreamSession:
        """为任务创建并登记新会话

        Raises:
            ConflictError: 该任务已有活跃会话
        """
        with self._lock:
            if task_id in self._sessions:
                raise ConflictError(task_id)
            session = StreamSession(task_id, self._config)
            self._sessions[task_id] = session
        log.info(
            "stream_session_opened",
            task_id=task_id,
            attempt_id=session.attempt_id,
        )
        return session

    def release(self, session: StreamSession) -> bool:
        """移除会话（仅当登记的仍是同一个会话对象），并停止其缓冲区

        Returns:
            True 如果本次调用移除了登记项
        """
        session.buffer.cancel()
        with self._lock:
            if self._sessions.get(session.task_id) is not session:
                return False
            del self._sessions[session.task_id]
        log.info(
            "stream_session_released",
            task_id=session.task_id,
            attempt_id=session.attempt_id,
            fragments=session.fragment_count,
        )
        return True

    @contextmanager
    def session(self, task_id: str) -> Iterator[StreamSession]:
        """作用域会话：退出时（含异常/取消）必定移除"""
        session = self.open(task_id)
        try:
            yield session
        finally:
            self.release(session)

    def get(self, task_id: str) -> StreamSession | None:
        with self._lock:
            return self._sessions.get(task_id)

    def cancel(self, task_id: str) -> bool:
        """按 task_id 取消活跃会话

        Returns:
            True 如果存在活跃会话且本次触发了取消
        """
        session = self.get(task_id)
        if session is None:
            return False
        return session.cancel()

    def active_task_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._sessions

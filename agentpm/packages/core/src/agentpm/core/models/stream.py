"""流式模型 -- StreamSnapshot + StreamEvent

snapshot 携带的是截至当前的完整内容而不是增量：
消费端漏掉任意多个 snapshot，只要收到最新的一个仍然完全正确。
"""

from pydantic import BaseModel, Field

from .enums import StreamEventType


class StreamSnapshot(BaseModel):
    """某一时刻的完整累积内容"""

    task_id: str
    content: str = Field(description="截至当前的完整内容（非增量）")
    seq: int = Field(default=0, ge=0, description="会话内发出序号，仅用于诊断")

    @property
    def length(self) -> int:
        return len(self.content)


class StreamError(BaseModel):
    """error 事件携带的错误描述符"""

    code: str
    message: str


class StreamEvent(BaseModel):
    """StreamChannel 上的离散事件"""

    type: StreamEventType
    task_id: str
    snapshot: StreamSnapshot | None = None
    tokens_used: int | None = Field(default=None, ge=0)
    error: StreamError | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in (StreamEventType.COMPLETE, StreamEventType.ERROR)

    @classmethod
    def message(cls, snapshot: StreamSnapshot) -> "StreamEvent":
        return cls(type=StreamEventType.MESSAGE, task_id=snapshot.task_id, snapshot=snapshot)

    @classmethod
    def complete(cls, task_id: str, tokens_used: int) -> "StreamEvent":
        return cls(type=StreamEventType.COMPLETE, task_id=task_id, tokens_used=tokens_used)

    @classmethod
    def failure(cls, task_id: str, code: str, message: str) -> "StreamEvent":
        return cls(
            type=StreamEventType.ERROR,
            task_id=task_id,
            error=StreamError(code=code, message=message),
        )

    def to_sse_data(self) -> dict:
        """转换为 SSE data JSON"""
        data: dict = {"task_id": self.task_id}
        if self.snapshot is not None:
            data["content"] = self.snapshot.content
            data["length"] = self.snapshot.length
        if self.tokens_used is not None:
            data["tokens_used"] = self.tokens_used
        if self.error is not None:
            data["code"] = self.error.code
            data["message"] = self.error.message
        return data

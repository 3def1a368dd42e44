"""agentpm Core Streaming -- 缓冲流式 + 消费端归并

StreamBuffer 累积片段并按策略 flush 为完整内容 snapshot，StreamChannel 投递给唯一消费端，
StreamReconciler 在消费端把流收敛为任务终态，StreamRegistry 保证每个任务最多一个活跃会话。
"""

from .buffer import StreamBuffer, ends_on_boundary
from .channel import StreamChannel
from .reconciler import StreamReconciler
from .registry import StreamRegistry, StreamSession

__all__ = [
    "StreamBuffer",
    "StreamChannel",
    "StreamReconciler",
    "StreamRegistry",
    "StreamSession",
    "ends_on_boundary",
]

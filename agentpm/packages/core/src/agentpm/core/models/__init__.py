"""agentpm Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    StreamEventType,
    TaskStatus,
    validate_transition,
)
from .stream import StreamError, StreamEvent, StreamSnapshot
from .task import Project, Task

__all__ = [
    # 枚举
    "TaskStatus",
    "StreamEventType",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "validate_transition",
    # 实体
    "Task",
    "Project",
    # 流式
    "StreamSnapshot",
    "StreamEvent",
    "StreamError",
]

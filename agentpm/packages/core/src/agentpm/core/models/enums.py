"""枚举定义

包含 TaskStatus 状态机、StreamEventType，
以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机

    PENDING -> ASSIGNED -> EXECUTING -> COMPLETED，
    EXECUTING 失败/取消回到 ASSIGNED（可重试）；阻塞执行路径允许 ASSIGNED -> COMPLETED。
    """

    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"


# 合法状态流转
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.ASSIGNED},
    TaskStatus.ASSIGNED: {TaskStatus.EXECUTING, TaskStatus.COMPLETED},
    TaskStatus.EXECUTING: {TaskStatus.COMPLETED, TaskStatus.ASSIGNED},
    # 终态不可再流转
    TaskStatus.COMPLETED: set(),
}

TERMINAL_STATES: set[TaskStatus] = {TaskStatus.COMPLETED}


class StreamEventType(StrEnum):
    """StreamChannel 事件类型（同时也是 SSE event 名）"""

    MESSAGE = "message"
    COMPLETE = "complete"
    ERROR = "error"


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed

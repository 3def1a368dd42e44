"""Core 异常体系

任务生命周期与流式会话的全部失败都落到以下类型之一。
core 内部不做任何重试：每个失败只决定任务状态（ASSIGNED 或不变）并向调用方抛出。
"""


class AgentPMError(Exception):
    """agentpm 基础异常"""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        """错误描述符，用于 SSE error 事件和 HTTP 错误体"""
        return {"code": self.code, "message": self.message}


class TaskNotFoundError(AgentPMError):
    """任务不存在"""

    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with id {task_id} does not exist")
        self.task_id = task_id


class ProjectNotFoundError(AgentPMError):
    """项目不存在"""

    code = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project with id {project_id} does not exist")
        self.project_id = project_id


class InvalidTransitionError(AgentPMError):
    """非法状态流转（调用方错误，不重试）"""

    code = "INVALID_TRANSITION"

    def __init__(self, task_id: str, from_status: str, to_status: str) -> None:
        super().__init__(
            f"Task {task_id} cannot transition from {from_status} to {to_status}"
        )
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status


class ConflictError(AgentPMError):
    """同一任务已有活跃的执行会话，任务状态不变"""

    code = "TASK_EXECUTION_CONFLICT"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} already has an active execution")
        self.task_id = task_id


class NoActiveStreamError(AgentPMError):
    """按 task_id 取消时没有活跃会话"""

    code = "NO_ACTIVE_STREAM"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} has no active stream")
        self.task_id = task_id


class IllegalStateError(AgentPMError):
    """StreamBuffer 关闭后仍被写入"""

    code = "ILLEGAL_STATE"


class TransportError(AgentPMError):
    """通道写入/投递失败，会话拆除，任务回到 ASSIGNED"""

    code = "TRANSPORT_ERROR"


class LivenessTimeoutError(TransportError):
    """消费端在 liveness 窗口内未收到任何事件（静默断流）"""

    code = "LIVENESS_TIMEOUT"

    def __init__(self, task_id: str, timeout_s: float) -> None:
        super().__init__(
            f"No stream event for task {task_id} within {timeout_s:g}s"
        )
        self.task_id = task_id
        self.timeout_s = timeout_s


class ProducerError(AgentPMError):
    """FragmentSource 失败，处理方式与 TransportError 相同"""

    code = "PRODUCER_ERROR"


class StreamCancelledError(AgentPMError):
    """消费端主动关闭通道（取消），任务回到 ASSIGNED"""

    code = "STREAM_CANCELLED"


# error 事件描述符 code -> 异常类型，供消费端还原错误
_ERRORS_BY_CODE: dict[str, type[AgentPMError]] = {
    TransportError.code: TransportError,
    ProducerError.code: ProducerError,
    StreamCancelledError.code: StreamCancelledError,
}


def error_from_descriptor(code: str, message: str) -> AgentPMError:
    """根据 error 事件描述符重建异常；未知 code 视为 TransportError"""
    error_cls = _ERRORS_BY_CODE.get(code, TransportError)
    return error_cls(message)

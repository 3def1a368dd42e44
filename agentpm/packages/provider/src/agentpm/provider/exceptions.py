"""Provider 异常体系"""


class ProviderError(Exception):
    """Provider 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重新执行恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class ProxyUnreachableError(ProviderError):
    """LiteLLM Proxy 不可达（连接失败、超时、DNS 解析失败等）"""

    def __init__(self, proxy_url: str, original_error: Exception) -> None:
        """
        Args:
            proxy_url: 尝试连接的 Proxy 地址
            original_error: 原始异常
        """
        super().__init__(
            f"LiteLLM Proxy 不可达: {type(original_error).__name__}",
            recoverable=True,
        )
        self.proxy_url = proxy_url
        self.original_error = original_error


class UnknownAgentError(ProviderError):
    """任务指派的 agent 角色不存在"""

    def __init__(self, agent: str) -> None:
        super().__init__(f"Unknown agent type: {agent}", recoverable=False)
        self.agent = agent

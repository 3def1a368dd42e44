"""agentpm Provider -- 流式生成抽象层

packages/provider 的公开接口导出。
"""

# 专家角色
from .agents import (
    AGENT_ROLES,
    PROJECT_MANAGER,
    AgentRole,
    build_messages,
    delegate_agent,
    get_role,
)

# 配置
from .config import ProviderConfig, create_fragment_source, load_provider_config
from .echo_source import EchoFragmentSource

# 异常
from .exceptions import ProviderError, ProxyUnreachableError, UnknownAgentError
from .litellm_source import LiteLLMFragmentSource

# 数据模型
from .models import ExecutionRequest, Fragment, StreamEnd, TokenUsage
from .planning import ProjectBreakdown, parse_task_list, plan_project
from .protocols import FragmentSource

__all__ = [
    "TokenUsage",
    "ExecutionRequest",
    "Fragment",
    "StreamEnd",
    "FragmentSource",
    "EchoFragmentSource",
    "LiteLLMFragmentSource",
    "AGENT_ROLES",
    "PROJECT_MANAGER",
    "ProjectBreakdown",
    "parse_task_list",
    "plan_project",
    "AgentRole",
    "build_messages",
    "delegate_agent",
    "get_role",
    "ProviderConfig",
    "create_fragment_source",
    "load_provider_config",
    "ProviderError",
    "ProxyUnreachableError",
    "UnknownAgentError",
]

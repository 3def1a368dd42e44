"""ProviderConfig -- Provider 配置加载

从环境变量加载配置，不硬编码 provider/模型名。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class ProviderConfig(BaseModel):
    """Provider 包配置 -- 从环境变量加载

    环境变量:
        LITELLM_PROXY_URL: Proxy 地址（默认 http://localhost:4000）
        LITELLM_PROXY_KEY: Proxy 访问密钥
        AGENTPM_LLM_MODE: LLM 运行模式（litellm/echo）
        AGENTPM_LLM_MODEL: Proxy 侧 model group（默认 main）
        AGENTPM_LLM_TIMEOUT_S: 调用超时（秒，默认 30）
        AGENTPM_ECHO_DELAY_MS: Echo 模式片段间隔（毫秒，默认 20）
    """

    proxy_base_url: str = Field(
        default="http://localhost:4000",
        description="LiteLLM Proxy 基础 URL",
    )
    proxy_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Proxy 访问密钥（不是 LLM provider API key）",
    )
    llm_mode: Literal["litellm", "echo"] = Field(
        default="litellm",
        description="LLM 运行模式：litellm / echo",
    )
    model_alias: str = Field(default="main", description="Proxy model group")
    timeout_s: int = Field(
        default=30,
        ge=1,
        description="LLM 调用超时（秒）",
    )
    echo_delay_ms: int = Field(
        default=20,
        ge=0,
        description="Echo 模式相邻片段的模拟延迟（毫秒）",
    )


def _read_int(name: str, fallback: int) -> int | None:
    val = os.environ.get(name)
    if not val:
        return None
    try:
        return int(val)
    except ValueError:
        log.warning(
            "invalid_provider_config",
            env_var=name,
            value=val,
            fallback=fallback,
        )
        # 使用默认值，不阻塞启动
        return None


def load_provider_config() -> ProviderConfig:
    """从环境变量加载 Provider 配置

    Returns:
        ProviderConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("LITELLM_PROXY_URL"):
        kwargs["proxy_base_url"] = val

    if val := os.environ.get("LITELLM_PROXY_KEY"):
        kwargs["proxy_api_key"] = SecretStr(val)

    if val := os.environ.get("AGENTPM_LLM_MODE"):
        kwargs["llm_mode"] = val

    if val := os.environ.get("AGENTPM_LLM_MODEL"):
        kwargs["model_alias"] = val

    if (timeout := _read_int("AGENTPM_LLM_TIMEOUT_S", 30)) is not None:
        kwargs["timeout_s"] = timeout

    if (delay := _read_int("AGENTPM_ECHO_DELAY_MS", 20)) is not None:
        kwargs["echo_delay_ms"] = delay

    return ProviderConfig(**kwargs)


def create_fragment_source(config: ProviderConfig):
    """按运行模式创建 FragmentSource"""
    if config.llm_mode == "litellm":
        from .litellm_source import LiteLLMFragmentSource

        return LiteLLMFragmentSource(
            proxy_base_url=config.proxy_base_url,
            proxy_api_key=config.proxy_api_key.get_secret_value(),
            model_alias=config.model_alias,
            timeout_s=config.timeout_s,
        )

    from .echo_source import EchoFragmentSource

    return EchoFragmentSource(delay_s=config.echo_delay_ms / 1000)

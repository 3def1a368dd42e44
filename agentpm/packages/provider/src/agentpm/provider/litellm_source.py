"""LiteLLMFragmentSource -- LiteLLM Proxy 流式调用封装

通过 litellm.acompletion(stream=True) 调用 Proxy，delta.content 逐段产出，
最后一个 usage chunk 提供 token 统计。
"""

import asyncio
import time

import httpx
import structlog
from litellm import acompletion

from .agents import build_messages
from .exceptions import ProviderError, ProxyUnreachableError
from .models import ExecutionRequest, Fragment, StreamEnd, TokenUsage

log = structlog.get_logger()

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

# 连接类异常类型集合（包装为 ProxyUnreachableError）
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    OSError,
    TimeoutError,
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.TimeoutException,
)


def _is_connection_error(e: Exception) -> bool:
    """判断异常是否为连接类错误（Proxy 不可达）"""
    if isinstance(e, _CONNECTION_ERROR_TYPES):
        return True
    # LiteLLM 的 APIConnectionError 也属于连接类错误
    error_name = type(e).__name__
    return error_name in ("APIConnectionError", "APITimeoutError")


def parse_usage(chunk) -> TokenUsage | None:
    """从 stream chunk 解析 token 使用数据；chunk 不带 usage 时返回 None"""
    usage = getattr(chunk, "usage", None)
    if usage is None:
        return None
    try:
        return TokenUsage(
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            total_tokens=getattr(usage, "total_tokens", 0) or 0,
        )
    except (TypeError, ValueError) as e:
        log.debug("parse_usage_failed", error=str(e))
        return None


def _delta_text(chunk) -> str:
    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return ""
    delta = getattr(choices[0], "delta", None)
    return (getattr(delta, "content", None) or "") if delta is not None else ""


class LiteLLMFragmentSource:
    """LiteLLM Proxy 流式 FragmentSource"""

    name = "litellm"

    def __init__(
        self,
        proxy_base_url: str = "http://localhost:4000",
        proxy_api_key: str = "",
        model_alias: str = "main",
        timeout_s: int = 30,
    ) -> None:
        """初始化 LiteLLM Proxy 流式生成端

        Args:
            proxy_base_url: Proxy 基础 URL
            proxy_api_key: Proxy 访问密钥（LITELLM_PROXY_KEY）
            model_alias: Proxy 侧的 model group 名称
            timeout_s: 请求超时（秒）

        注意: proxy_api_key 是 Proxy 管理密钥，不是 LLM provider API key。
        """
        self._proxy_base_url = proxy_base_url.rstrip("/")
        self._proxy_api_key = proxy_api_key
        self._model_alias = model_alias
        self._timeout_s = timeout_s

    async def produce(self, request: ExecutionRequest, cancel_event: asyncio.Event):
        """流式调用 Proxy 并逐段产出

        Raises:
            ProxyUnreachableError: Proxy 连接失败或超时
            ProviderError: Proxy 返回错误（如模型不可用、配额耗尽）
        """
        messages = build_messages(request)
        start_time = time.monotonic()
        usage: TokenUsage | None = None
        model_name = ""
        emitted = 0

        try:
            log.debug(
                "litellm_stream_start",
                task_id=request.task_id,
                model_alias=self._model_alias,
                agent=request.agent,
            )
            response = await acompletion(
                model=self._model_alias,
                messages=messages,
                api_base=self._proxy_base_url,
                api_key=self._proxy_api_key or "no-key",
                timeout=self._timeout_s,
                stream=True,
                stream_options={"include_usage": True},
            )

            async for chunk in response:
                if cancel_event.is_set():
                    log.info(
                        "litellm_stream_cancelled",
                        task_id=request.task_id,
                        emitted=emitted,
                    )
                    return
                model_name = getattr(chunk, "model", "") or model_name
                usage = parse_usage(chunk) or usage
                text = _delta_text(chunk)
                if text:
                    emitted += 1
                    yield Fragment(text=text)

        except ProviderError:
            raise
        except Exception as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            log.error(
                "litellm_stream_failed",
                task_id=request.task_id,
                model_alias=self._model_alias,
                error_type=type(e).__name__,
                duration_ms=duration_ms,
                exc_info=True,
            )
            if _is_connection_error(e):
                raise ProxyUnreachableError(
                    proxy_url=self._proxy_base_url,
                    original_error=e,
                ) from e
            raise ProviderError(
                message=f"LLM 调用失败: {type(e).__name__}", recoverable=True
            ) from e

        if usage is None:
            log.warning("stream_usage_unavailable", task_id=request.task_id)
            usage = TokenUsage()

        log.info(
            "litellm_stream_completed",
            task_id=request.task_id,
            model_name=model_name,
            fragments=emitted,
            total_tokens=usage.total_tokens,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        yield StreamEnd(token_usage=usage, model_name=model_name)

    async def health_check(self) -> bool:
        """检查 LiteLLM Proxy 可达性

        发送 GET {proxy_base_url}/health/liveliness 请求；不抛异常，失败返回 False。
        """
        url = f"{self._proxy_base_url}/health/liveliness"
        try:
            async with httpx.AsyncClient() as http_client:
                resp = await http_client.get(url, timeout=HEALTH_CHECK_TIMEOUT_S)
                return resp.status_code == 200
        except httpx.HTTPError as e:
            log.debug("health_check_failed", url=url, error=str(e))
            return False

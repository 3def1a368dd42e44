"""日志配置 -- structlog + 标准库 logging 共用一条处理器链

流式执行会把模型输出和上游错误带进日志，因此链上额外两步：
- redact_secrets: 遮蔽 api key / Authorization 等敏感字段与 sk- 形式的密钥
- truncate_content: 截断 content/result 等大文本字段，避免整段生成内容进日志
"""

import logging
import os
import re

import structlog
from pydantic import BaseModel, Field

# 按字段名整体遮蔽
_SECRET_KEYS = frozenset({"api_key", "proxy_api_key", "authorization", "token", "password"})
# 字符串值中出现的密钥片段
_SECRET_PATTERN = re.compile(r"\b(sk-[A-Za-z0-9_\-]{2})[A-Za-z0-9_\-]*")
# 可能携带整段生成内容的字段
_CONTENT_KEYS = ("content", "result", "snapshot", "description")

REDACTED = "***"


class LoggingSettings(BaseModel):
    """日志配置（来自 AGENTPM_LOG_* 环境变量）"""

    log_format: str = Field(default="dev", description="dev | json")
    log_level: str = Field(default="INFO")
    max_content_chars: int = Field(default=200, ge=0, description="0 表示不截断")
    quiet_loggers: list[str] = Field(
        default_factory=lambda: ["LiteLLM", "httpx", "aiosqlite"],
        description="降到 WARNING 的第三方 logger",
    )

    @classmethod
    def from_env(cls) -> "LoggingSettings":
        kwargs: dict = {}
        if val := os.environ.get("AGENTPM_LOG_FORMAT"):
            kwargs["log_format"] = val.lower()
        if val := os.environ.get("AGENTPM_LOG_LEVEL"):
            kwargs["log_level"] = val.upper()
        if val := os.environ.get("AGENTPM_LOG_MAX_CONTENT"):
            try:
                kwargs["max_content_chars"] = max(0, int(val))
            except ValueError:
                structlog.get_logger().warning(
                    "invalid_log_setting", name="AGENTPM_LOG_MAX_CONTENT", value=val
                )
        if (val := os.environ.get("AGENTPM_LOG_QUIET")) is not None:
            kwargs["quiet_loggers"] = [name.strip() for name in val.split(",") if name.strip()]
        return cls(**kwargs)


def redact_secrets(logger, method_name: str, event_dict: dict) -> dict:
    """structlog 处理器：遮蔽密钥字段与字符串中的 sk- 密钥"""
    for key, value in event_dict.items():
        if key.lower() in _SECRET_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "sk-" in value:
            event_dict[key] = _SECRET_PATTERN.sub(rf"\1{REDACTED}", value)
    return event_dict


def truncating_processor(max_chars: int):
    """构造截断大文本字段的 structlog 处理器"""

    def truncate_content(logger, method_name: str, event_dict: dict) -> dict:
        if max_chars <= 0:
            return event_dict
        for key in _CONTENT_KEYS:
            value = event_dict.get(key)
            if isinstance(value, str) and len(value) > max_chars:
                event_dict[key] = f"{value[:max_chars]}...(+{len(value) - max_chars})"
        return event_dict

    return truncate_content


def setup_logging(settings: LoggingSettings | None = None) -> LoggingSettings:
    """初始化 structlog 与根 logger；返回生效的配置"""
    settings = settings or LoggingSettings.from_env()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        truncating_processor(settings.max_content_chars),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.log_level, logging.INFO))

    for name in settings.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
    return settings


def setup_logfire() -> bool:
    """LOGFIRE_SEND_TO_LOGFIRE=true 时启用 Logfire（apm extra）；返回是否启用"""
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return False
    try:
        import logfire

        logfire.configure()
        logfire.instrument_fastapi()
    except Exception as e:
        # Logfire 不可用时只保留本地日志
        structlog.get_logger().warning("logfire_init_failed", error_type=type(e).__name__)
        return False
    return True

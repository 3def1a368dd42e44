"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、SSE 心跳间隔，以及流式缓冲（flush 阈值、liveness 窗口）配置。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("AGENTPM_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "AGENTPM_DB_PATH",
        str(_get_base_dir() / "sqlite" / "agentpm.db"),
    )


# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("AGENTPM_SSE_HEARTBEAT_INTERVAL", "15")
)


class StreamingConfig(BaseModel):
    """流式缓冲配置 -- 每个 StreamSession 共用同一份 flush 策略

    环境变量:
        AGENTPM_STREAM_FLUSH_CHARS: 未 flush 内容达到该字符数即 flush（默认 256）
        AGENTPM_STREAM_FLUSH_INTERVAL_MS: 两次 flush 最大间隔（毫秒，默认 500）
        AGENTPM_STREAM_BOUNDARY_RATIO: 遇到词/句边界时提前 flush 的阈值比例（默认 0.75）
        AGENTPM_STREAM_LIVENESS_TIMEOUT_S: 消费端无事件判定失联的窗口（秒，默认 60）
    """

    flush_chars: int = Field(default=256, ge=1, description="size 触发阈值（字符数）")
    flush_interval_s: float = Field(default=0.5, gt=0, description="time 触发阈值（秒）")
    boundary_ratio: float = Field(
        default=0.75,
        gt=0,
        le=1,
        description="边界触发：未 flush 长度达到 flush_chars * ratio 且片段落在边界上",
    )
    liveness_timeout_s: float = Field(
        default=60.0, gt=0, description="消费端 liveness 超时（秒）"
    )


def _read_env(name: str, parse, kwargs: dict, key: str) -> None:
    """读取单个环境变量，解析失败时记录告警并保留默认值"""
    val = os.environ.get(name)
    if not val:
        return
    try:
        kwargs[key] = parse(val)
    except ValueError:
        log.warning("invalid_streaming_config", env_var=name, value=val)


def load_streaming_config() -> StreamingConfig:
    """从环境变量加载流式缓冲配置

    Returns:
        StreamingConfig 实例
    """
    kwargs: dict = {}
    _read_env("AGENTPM_STREAM_FLUSH_CHARS", int, kwargs, "flush_chars")
    _read_env(
        "AGENTPM_STREAM_FLUSH_INTERVAL_MS",
        lambda v: int(v) / 1000,
        kwargs,
        "flush_interval_s",
    )
    _read_env("AGENTPM_STREAM_BOUNDARY_RATIO", float, kwargs, "boundary_ratio")
    _read_env(
        "AGENTPM_STREAM_LIVENESS_TIMEOUT_S", float, kwargs, "liveness_timeout_s"
    )

    try:
        return StreamingConfig(**kwargs)
    except ValueError:
        # pydantic ValidationError 是 ValueError 子类：越界值整体回退默认
        log.warning("invalid_streaming_config_range", values=kwargs)
        return StreamingConfig()

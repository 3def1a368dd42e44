"""EchoFragmentSource -- Echo 模式流式生成

不访问任何模型：把任务 prompt 回声为 "Echo: {content}"，按单词逐段产出，
用于开发环境与测试。
"""

import asyncio
import re

import structlog

from .agents import PROJECT_MANAGER, build_messages
from .models import ExecutionRequest, Fragment, StreamEnd, TokenUsage
from .planning import echo_breakdown

log = structlog.get_logger()

# 单词 + 其后的空白为一个片段，拼接后与原文完全一致
_FRAGMENT_RE = re.compile(r"\s*\S+\s*")


def split_fragments(text: str) -> list[str]:
    """把文本切成逐词片段（首个片段带上前导空白）"""
    parts = _FRAGMENT_RE.findall(text)
    return parts or ([text] if text else [])


class EchoFragmentSource:
    """Echo 模式 FragmentSource"""

    name = "echo"

    def __init__(self, delay_s: float = 0.02) -> None:
        """
        Args:
            delay_s: 相邻片段之间的模拟延迟（秒）
        """
        self._delay_s = delay_s

    async def produce(self, request: ExecutionRequest, cancel_event: asyncio.Event):
        """逐词产出回声内容

        行为:
            1. 按 agent 角色构建 messages，取最后一条 user message
            2. 回声为 "Echo: {content}"（Project Manager 请求则给出确定性拆解），按单词切片逐个产出
            3. cancel_event 置位后立即停止，不产出 StreamEnd
            4. token 按 word 数简单估算
        """
        messages = build_messages(request)
        user_content = self._extract_last_user_content(messages)
        if request.agent == PROJECT_MANAGER:
            response_text = echo_breakdown(request.description, request.max_tasks)
        else:
            response_text = f"Echo: {user_content}"

        for index, fragment in enumerate(split_fragments(response_text)):
            if cancel_event.is_set():
                log.info("echo_source_cancelled", task_id=request.task_id, emitted=index)
                return
            if index and self._delay_s > 0:
                await asyncio.sleep(self._delay_s)
            yield Fragment(text=fragment)

        prompt_tokens = sum(len(m["content"].split()) for m in messages)
        completion_tokens = len(response_text.split())
        yield StreamEnd(
            token_usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            model_name="echo",
        )

    @staticmethod
    def _extract_last_user_content(messages: list[dict[str, str]]) -> str:
        """提取最后一条 user message 的 content，无 user 消息时返回 "(empty)" """
        for msg in reversed(messages):
            if msg.get("role") == "user":
                return msg.get("content", "")
        return "(empty)"

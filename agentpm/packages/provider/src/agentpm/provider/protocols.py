"""FragmentSource Protocol

生成端只需要实现 produce()：返回有限、不可重启的异步序列，
片段按生成顺序产出，以 StreamEnd 结束；cancel_event 被置位后应尽快停止。
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Protocol

from .models import ExecutionRequest, Fragment, StreamEnd


class FragmentSource(Protocol):
    """流式片段生成端"""

    name: str

    def produce(
        self, request: ExecutionRequest, cancel_event: asyncio.Event
    ) -> AsyncIterator[Fragment | StreamEnd]:
        """按顺序产出片段，最后产出 StreamEnd；失败时抛出 ProviderError"""
        ...

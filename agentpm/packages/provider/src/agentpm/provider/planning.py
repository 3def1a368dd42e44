"""项目拆解 -- Project Manager 把自由文本的项目请求拆成任务描述

拆解走与任务执行相同的 FragmentSource：以 PROJECT_MANAGER 身份发起一次生成，
收齐全部片段后解析编号列表。拆解消耗的 token 计入项目汇总。
"""

import asyncio
import re
from contextlib import aclosing

import structlog
from pydantic import BaseModel, Field

from .agents import PROJECT_MANAGER
from .exceptions import ProviderError
from .models import ExecutionRequest, StreamEnd, TokenUsage

log = structlog.get_logger()

DEFAULT_MAX_TASKS = 8

# "1. xxx" / "2) xxx" / "- xxx" / "* xxx"
_LIST_ITEM_RE = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+(.+?)\s*$")
# Echo 拆解的子句分隔：句号、分号、换行、逗号、" and "
_CLAUSE_SPLIT_RE = re.compile(r"[.;\n]+|,\s*|\s+and\s+", re.IGNORECASE)


class ProjectBreakdown(BaseModel):
    """一次项目拆解的结果"""

    tasks: list[str] = Field(min_length=1, description="按执行顺序排列的任务描述")
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    model_name: str = Field(default="")

    @property
    def total_tokens(self) -> int:
        return self.token_usage.total_tokens


def parse_task_list(text: str, max_tasks: int = DEFAULT_MAX_TASKS) -> list[str]:
    """解析模型输出的任务列表

    优先取编号/项目符号行；整段都没有列表标记时退化为逐行非空文本。
    去掉 markdown 加粗，去重保序，截断到 max_tasks。
    """
    lines = [line for line in text.splitlines() if line.strip()]
    items = [m.group(1) for line in lines if (m := _LIST_ITEM_RE.match(line))]
    if not items:
        items = lines

    tasks: list[str] = []
    for item in items:
        cleaned = item.strip(" *\t")
        if cleaned and cleaned not in tasks:
            tasks.append(cleaned)
    return tasks[:max_tasks]


def echo_breakdown(project_request: str, max_tasks: int = DEFAULT_MAX_TASKS) -> str:
    """Echo 模式的确定性拆解

    按子句拆分请求；只有一个子句时给出设计 / 实现 / 部署三步。
    """
    clauses = [c.strip() for c in _CLAUSE_SPLIT_RE.split(project_request) if c.strip()]
    if len(clauses) <= 1:
        subject = clauses[0] if clauses else project_request.strip()
        clauses = [
            f"Design the architecture for {subject}",
            f"Implement {subject}",
            f"Set up the deployment pipeline for {subject}",
        ]
    return "\n".join(
        f"{index}. {clause}" for index, clause in enumerate(clauses[:max_tasks], start=1)
    )


async def plan_project(
    source,
    project_request: str,
    *,
    plan_id: str,
    max_tasks: int = DEFAULT_MAX_TASKS,
) -> ProjectBreakdown:
    """让 Project Manager 拆解项目请求

    Args:
        source: FragmentSource
        project_request: 自由文本的项目请求
        plan_id: 本次拆解的标识（日志关联用，同时作为生成请求的 task_id）
        max_tasks: 任务数上限

    Raises:
        ProviderError: 生成失败、未以 StreamEnd 结束，或解析不出任何任务
    """
    request = ExecutionRequest(
        task_id=plan_id,
        description=project_request,
        agent=PROJECT_MANAGER,
        max_tasks=max_tasks,
    )
    parts: list[str] = []
    end: StreamEnd | None = None
    async with aclosing(source.produce(request, asyncio.Event())) as fragments:
        async for item in fragments:
            if isinstance(item, StreamEnd):
                end = item
                break
            parts.append(item.text)

    if end is None:
        raise ProviderError("Project breakdown ended without completion")
    tasks = parse_task_list("".join(parts), max_tasks)
    if not tasks:
        raise ProviderError("Project breakdown produced no tasks")

    log.info(
        "project_planned",
        plan_id=plan_id,
        task_count=len(tasks),
        total_tokens=end.total_tokens,
        model_name=end.model_name,
    )
    return ProjectBreakdown(tasks=tasks, token_usage=end.token_usage, model_name=end.model_name)

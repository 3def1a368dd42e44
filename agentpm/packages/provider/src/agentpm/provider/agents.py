"""agent 角色 -- system prompt、任务 prompt 构建、按关键词委派

三个专家角色执行任务；Project Manager 只负责把项目请求拆解为任务，不能被指派任务。
未显式指派的任务按描述中的关键词委派给最合适的专家，兜底为 Software Engineer。
"""

import re

from pydantic import BaseModel, Field

from .exceptions import UnknownAgentError
from .models import ExecutionRequest


class AgentRole(BaseModel):
    """单个专家角色"""

    name: str = Field(description="角色名（同时是 Task.assigned_agent 的取值）")
    system_prompt: str
    task_kind: str = Field(description="任务 prompt 中的任务类别")
    solution_hint: str = Field(description="任务 prompt 末尾对解答内容的要求")
    keywords: tuple[str, ...] = Field(default=(), description="委派关键词（小写）")


DEVOPS_ENGINEER = "DevOps Engineer"
TECHNICAL_LEAD = "Technical Lead"
SOFTWARE_ENGINEER = "Software Engineer"
PROJECT_MANAGER = "Project Manager"

PROJECT_MANAGER_PROMPT = (
    "You are an experienced Project Manager AI agent.\n"
    "Your job is to break a project request down into concrete, self-contained tasks "
    "that a DevOps Engineer, a Technical Lead or a Software Engineer can each execute.\n\n"
    "Respond with a numbered list only, one task per line, no more than {max_tasks} tasks.\n"
    "Each task must be a single sentence describing the work to be done."
)

AGENT_ROLES: dict[str, AgentRole] = {
    DEVOPS_ENGINEER: AgentRole(
        name=DEVOPS_ENGINEER,
        system_prompt=(
            "You are a skilled DevOps Engineer AI agent.\n"
            "Your responsibilities include:\n"
            "1. Infrastructure setup and management\n"
            "2. Deployment pipeline configuration\n"
            "3. Monitoring and logging setup\n"
            "4. Security implementation\n"
            "5. Performance optimization\n"
            "6. Cloud resource management\n\n"
            "Provide detailed, actionable solutions for DevOps-related tasks.\n"
            "Include specific tools, commands, or configurations when appropriate."
        ),
        task_kind="DevOps",
        solution_hint="Provide a detailed solution with specific steps, tools, and configurations.",
        keywords=(
            "deploy", "deployment", "infrastructure", "pipeline", "ci/cd", "ci",
            "docker", "kubernetes", "k8s", "monitoring", "logging", "cloud",
            "aws", "gcp", "azure", "terraform", "server", "hosting",
        ),
    ),
    TECHNICAL_LEAD: AgentRole(
        name=TECHNICAL_LEAD,
        system_prompt=(
            "You are an experienced Technical Lead AI agent.\n"
            "Your responsibilities include:\n"
            "1. Designing system architecture\n"
            "2. Making technical decisions\n"
            "3. Code reviews and quality assurance\n"
            "4. Technical documentation\n"
            "5. Best practices implementation\n"
            "6. Technical mentorship\n\n"
            "Provide detailed, well-structured solutions for technical tasks.\n"
            "Include architecture diagrams, design patterns, and code examples when appropriate."
        ),
        task_kind="technical leadership",
        solution_hint=(
            "Provide a detailed solution with architecture considerations, "
            "design patterns, and implementation guidance."
        ),
        keywords=(
            "architecture", "design", "review", "schema", "evaluate", "choose",
            "strategy", "standards", "technology stack", "tech stack", "plan",
        ),
    ),
    SOFTWARE_ENGINEER: AgentRole(
        name=SOFTWARE_ENGINEER,
        system_prompt=(
            "You are a skilled Software Engineer AI agent.\n"
            "Your responsibilities include:\n"
            "1. Implementing features and functionality\n"
            "2. Writing clean, maintainable code\n"
            "3. Unit and integration testing\n"
            "4. Debugging and troubleshooting\n"
            "5. Documentation\n"
            "6. Performance optimization\n\n"
            "Provide detailed, well-structured code solutions for development tasks.\n"
            "Include code examples, explanations, and testing strategies when appropriate."
        ),
        task_kind="software development",
        solution_hint=(
            "Provide a detailed solution with code examples, "
            "implementation details, and testing strategies."
        ),
        keywords=(
            "implement", "build", "code", "develop", "feature", "api", "endpoint",
            "test", "fix", "bug", "refactor", "frontend", "backend", "ui",
        ),
    ),
}

_WORD_RE = re.compile(r"[a-z0-9/+#.-]+")


def get_role(agent: str) -> AgentRole:
    """按角色名取 AgentRole

    Raises:
        UnknownAgentError: 角色不存在
    """
    role = AGENT_ROLES.get(agent)
    if role is None:
        raise UnknownAgentError(agent)
    return role


def delegate_agent(description: str) -> str:
    """按关键词命中数为任务选择角色；平局按 DevOps > Technical Lead > Software Engineer"""
    text = description.lower()
    words = set(_WORD_RE.findall(text))
    best_name = SOFTWARE_ENGINEER
    best_score = 0
    for role in AGENT_ROLES.values():
        score = sum(
            1
            for kw in role.keywords
            if (kw in text if " " in kw else kw in words)
        )
        if score > best_score:
            best_name, best_score = role.name, score
    return best_name


def build_messages(request: ExecutionRequest) -> list[dict[str, str]]:
    """构建 system + user 两条消息

    Raises:
        UnknownAgentError: request.agent 不是已知角色
    """
    if request.agent == PROJECT_MANAGER:
        return build_breakdown_messages(request.description, request.max_tasks)
    role = get_role(request.agent)
    user_prompt = (
        f"Please execute the following {role.task_kind} task:\n\n"
        f"Task: {request.description}\n\n"
        f"{role.solution_hint}"
    )
    return [
        {"role": "system", "content": role.system_prompt},
        {"role": "user", "content": user_prompt},
    ]


def build_breakdown_messages(project_request: str, max_tasks: int) -> list[dict[str, str]]:
    """构建 Project Manager 拆解项目请求的 system + user 消息"""
    return [
        {"role": "system", "content": PROJECT_MANAGER_PROMPT.format(max_tasks=max_tasks)},
        {
            "role": "user",
            "content": f"Break down the following project request into tasks:\n\n{project_request}",
        },
    ]

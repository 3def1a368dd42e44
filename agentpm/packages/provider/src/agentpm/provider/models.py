"""数据模型 -- TokenUsage + 流式生成的 Fragment / StreamEnd

FragmentSource 产出的序列：若干 Fragment，最后恰好一个 StreamEnd（携带 token 统计）。
失败通过迭代时抛出异常表达，不放进序列里。
"""

from pydantic import BaseModel, Field


class TokenUsage(BaseModel):
    """Token 使用统计

    key 命名对齐 OpenAI/LiteLLM 行业标准：
    prompt_tokens / completion_tokens / total_tokens
    """

    prompt_tokens: int = Field(default=0, ge=0, description="输入 token 数")
    completion_tokens: int = Field(default=0, ge=0, description="输出 token 数")
    total_tokens: int = Field(default=0, ge=0, description="总 token 数")


class ExecutionRequest(BaseModel):
    """一次任务执行的生成请求"""

    task_id: str = Field(description="任务 ID")
    description: str = Field(description="任务描述")
    agent: str = Field(description="负责执行的 agent 角色")
    max_tasks: int = Field(default=8, ge=1, le=20, description="项目拆解请求的任务数上限")


class Fragment(BaseModel):
    """一段新生成的文本"""

    text: str


class StreamEnd(BaseModel):
    """生成结束标记"""

    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    model_name: str = Field(default="", description="实际调用的模型名称")

    @property
    def total_tokens(self) -> int:
        return self.token_usage.total_tokens

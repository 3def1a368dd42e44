"""Task / Project Domain Model

Task 仅能通过 TaskLifecycle 的状态流转修改；
result 非空当且仅当 status == COMPLETED。
"""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from .enums import TaskStatus


class Project(BaseModel):
    """Project 数据模型 -- 拥有一组 Task，删除时级联删除"""

    project_id: str = Field(description="唯一标识，ULID 格式")
    title: str = Field(description="项目标题")
    planning_tokens: int = Field(default=0, ge=0, description="项目拆解（Project Manager）消耗的 token")
    tokens_used: int = Field(
        default=0, ge=0, description="planning_tokens + 所属任务 token 总和"
    )
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")


class Task(BaseModel):
    """Task 数据模型"""

    task_id: str = Field(description="唯一标识，ULID 格式")
    project_id: str = Field(description="所属项目 ID")
    description: str = Field(description="任务描述")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    result: str | None = Field(default=None, description="最终结果，仅 COMPLETED 时存在")
    tokens_used: int | None = Field(default=None, ge=0, description="执行消耗的 token")
    assigned_agent: str | None = Field(default=None, description="负责的 agent 角色")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")

    @model_validator(mode="after")
    def _result_iff_completed(self) -> "Task":
        if (self.result is not None) != (self.status == TaskStatus.COMPLETED):
            raise ValueError("result must be set if and only if status is COMPLETED")
        return self

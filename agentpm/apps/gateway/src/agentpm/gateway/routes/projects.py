"""项目路由

POST   /api/projects: 创建项目；给出 tasks 时按原样创建，给出 request 时由 Project Manager 拆解
GET    /api/projects: 项目列表（含任务计数）
GET    /api/projects/{project_id}: 项目详情
GET    /api/projects/{project_id}/tasks: 项目任务列表
DELETE /api/projects/{project_id}: 删除项目（级联删除任务）
POST   /api/projects/{project_id}/execute-all: 顺序执行所有 ASSIGNED 任务
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator
from starlette.responses import Response

from ..deps import get_task_service
from ..services.task_service import ExecutionOutcome, NewTask, TaskService
from .tasks import TaskView

router = APIRouter()


class CreateProjectRequest(BaseModel):
    """创建项目请求"""

    title: str | None = Field(default=None, min_length=1, max_length=500)
    request: str | None = Field(
        default=None,
        min_length=1,
        max_length=4000,
        description="自由文本项目请求，由 Project Manager 拆解为任务",
    )
    tasks: list[NewTask] = Field(default_factory=list)
    auto_assign: bool = Field(default=True, description="未指定 agent 的任务是否自动委派")
    max_tasks: int = Field(default=8, ge=1, le=20, description="拆解的任务数上限")

    @model_validator(mode="after")
    def _title_or_request(self) -> "CreateProjectRequest":
        if self.request is None and self.title is None:
            raise ValueError("title is required when no project request is given")
        if self.request is not None and self.tasks:
            raise ValueError("tasks cannot be combined with a project request")
        return self


class ProjectView(BaseModel):
    project_id: str
    title: str
    planning_tokens: int
    tokens_used: int
    created_at: str
    updated_at: str


class ProjectDetail(BaseModel):
    project: ProjectView
    tasks: list[TaskView]


class ProjectSummaryView(ProjectView):
    task_count: int
    completed_count: int
    assigned_count: int


class ProjectListResponse(BaseModel):
    projects: list[ProjectSummaryView]


class ExecuteAllResponse(BaseModel):
    project_id: str
    results: list[ExecutionOutcome]


def _project_view(project) -> ProjectView:
    return ProjectView(
        project_id=project.project_id,
        title=project.title,
        planning_tokens=project.planning_tokens,
        tokens_used=project.tokens_used,
        created_at=project.created_at.isoformat(),
        updated_at=project.updated_at.isoformat(),
    )


@router.post("/api/projects", status_code=201, response_model=ProjectDetail)
async def create_project(
    body: CreateProjectRequest,
    service: TaskService = Depends(get_task_service),
):
    """创建项目；任务按请求（或拆解结果）顺序创建"""
    if body.request is not None:
        project, tasks = await service.create_project_from_request(
            body.request, body.title, body.max_tasks
        )
    else:
        project, tasks = await service.create_project(body.title, body.tasks, body.auto_assign)
    return ProjectDetail(
        project=_project_view(project),
        tasks=[TaskView.from_task(t) for t in tasks],
    )


@router.get("/api/projects", response_model=ProjectListResponse)
async def list_projects(service: TaskService = Depends(get_task_service)):
    """项目列表，按 created_at 倒序"""
    summaries = await service.list_projects()
    return ProjectListResponse(
        projects=[
            ProjectSummaryView(
                **_project_view(s.project).model_dump(),
                task_count=s.task_count,
                completed_count=s.completed_count,
                assigned_count=s.assigned_count,
            )
            for s in summaries
        ]
    )


@router.get("/api/projects/{project_id}", response_model=ProjectDetail)
async def get_project(project_id: str, service: TaskService = Depends(get_task_service)):
    project = await service.get_project(project_id)
    tasks = await service.list_project_tasks(project_id)
    return ProjectDetail(
        project=_project_view(project),
        tasks=[TaskView.from_task(t) for t in tasks],
    )


@router.get("/api/projects/{project_id}/tasks", response_model=list[TaskView])
async def list_project_tasks(project_id: str, service: TaskService = Depends(get_task_service)):
    tasks = await service.list_project_tasks(project_id)
    return [TaskView.from_task(t) for t in tasks]


@router.delete("/api/projects/{project_id}", status_code=204)
async def delete_project(project_id: str, service: TaskService = Depends(get_task_service)):
    """删除项目；有任务正在流式执行时返回 409"""
    await service.delete_project(project_id)
    return Response(status_code=204)


@router.post("/api/projects/{project_id}/execute-all", response_model=ExecuteAllResponse)
async def execute_all(project_id: str, service: TaskService = Depends(get_task_service)):
    """顺序阻塞执行所有 ASSIGNED 任务，单个失败不中断"""
    results = await service.execute_all(project_id)
    return ExecuteAllResponse(project_id=project_id, results=results)

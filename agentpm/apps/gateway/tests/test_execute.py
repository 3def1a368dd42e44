"""阻塞执行测试 -- POST /api/tasks/{task_id}/execute 与 execute-all"""

from unittest.mock import AsyncMock, patch

from agentpm.provider import ProviderError
from httpx import ASGITransport, AsyncClient


class TestExecute:
    async def test_execute_returns_result(self, client: AsyncClient, create_project):
        project = await create_project("Say hello")
        task_id = project["tasks"][0]["task_id"]

        resp = await client.post(f"/api/tasks/{task_id}/execute")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "COMPLETED"
        assert data["result"] == "Hello world"
        assert data["tokens_used"] == 3

    async def test_execute_completed_task_conflicts(self, client: AsyncClient, create_project):
        project = await create_project("Say hello")
        task_id = project["tasks"][0]["task_id"]
        await client.post(f"/api/tasks/{task_id}/execute")

        resp = await client.post(f"/api/tasks/{task_id}/execute")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_TRANSITION"

    async def test_execute_failure_returns_502(self, client: AsyncClient, create_project, source):
        source.error = ProviderError("upstream died")
        project = await create_project("Fail")
        task_id = project["tasks"][0]["task_id"]

        resp = await client.post(f"/api/tasks/{task_id}/execute")
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "PRODUCER_ERROR"

        task = (await client.get(f"/api/tasks/{task_id}")).json()
        assert task["status"] == "ASSIGNED"

    async def test_execute_missing_task(self, client: AsyncClient):
        resp = await client.post("/api/tasks/01JNONEXISTENT0000000000AA/execute")
        assert resp.status_code == 404


class TestExecuteAll:
    async def test_executes_assigned_tasks_in_order(
        self, client: AsyncClient, create_project, source
    ):
        project = await create_project("first", "second")
        project_id = project["project"]["project_id"]

        resp = await client.post(f"/api/projects/{project_id}/execute-all")
        assert resp.status_code == 200
        results = resp.json()["results"]
        assert [r["status"] for r in results] == ["COMPLETED", "COMPLETED"]
        assert [r["task_id"] for r in results] == [t["task_id"] for t in project["tasks"]]
        assert [req.description for req in source.requests] == ["first", "second"]

        detail = (await client.get(f"/api/projects/{project_id}")).json()
        assert detail["project"]["tokens_used"] == 6

    async def test_skips_pending_tasks(self, client: AsyncClient, create_project):
        project = await create_project("later", agent=None, auto_assign=False)
        project_id = project["project"]["project_id"]
        resp = await client.post(f"/api/projects/{project_id}/execute-all")
        assert resp.json()["results"] == []

    async def test_failure_recorded_per_task(self, client: AsyncClient, create_project, source):
        source.error = ProviderError("down")
        project = await create_project("a", "b")
        project_id = project["project"]["project_id"]

        results = (await client.post(f"/api/projects/{project_id}/execute-all")).json()["results"]
        assert len(results) == 2
        for result in results:
            assert result["status"] == "ASSIGNED"
            assert result["error"]["code"] == "PRODUCER_ERROR"

    async def test_missing_project(self, client: AsyncClient):
        resp = await client.post("/api/projects/missing/execute-all")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "PROJECT_NOT_FOUND"


class TestUpstreamErrorMessage:
    """上游原始异常文本（可能含密钥/内网地址）不得出现在响应里"""

    async def test_litellm_failure_body_is_redacted(self, store_group, streaming_config):
        from agentpm.gateway.main import build_app_state, create_app
        from agentpm.provider.litellm_source import LiteLLMFragmentSource

        application = create_app()
        build_app_state(
            application,
            store_group,
            LiteLLMFragmentSource(proxy_api_key="sk-test"),
            streaming_config,
        )
        leak = RuntimeError("auth failed for key sk-secret at internal-host:4000")

        async with AsyncClient(
            transport=ASGITransport(app=application), base_url="http://test"
        ) as ac:
            created = await ac.post(
                "/api/projects",
                json={
                    "title": "Redaction",
                    "tasks": [{"description": "Say hello", "agent": "Software Engineer"}],
                },
            )
            task_id = created.json()["tasks"][0]["task_id"]

            with patch(
                "agentpm.provider.litellm_source.acompletion",
                new_callable=AsyncMock,
                side_effect=leak,
            ):
                resp = await ac.post(f"/api/tasks/{task_id}/execute")

        assert resp.status_code == 502
        error = resp.json()["error"]
        assert error["code"] == "PRODUCER_ERROR"
        assert error["message"] == "Fragment source failed: ProviderError (recoverable=true)"
        assert "sk-secret" not in resp.text
        assert "internal-host" not in resp.text

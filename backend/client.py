"""
HTTP client for the taskmaster API.

Mirrors the browser app's service layer: one small namespace per resource,
each method returning the decoded {"success": ..., "data": ...} envelope.
"""
from typing import Any, Optional

import httpx

DEFAULT_BASE_URL = "http://localhost:8000/api"


class ApiError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class _Resource:
    def __init__(self, client: "TaskmasterClient"):
        self._client = client


class AuthAPI(_Resource):
    def register(self, email: str, name: str) -> dict:
        return self._client.request("POST", "/auth/register", json={"email": email, "name": name})

    def me(self) -> dict:
        return self._client.request("GET", "/auth/me")


class ProjectsAPI(_Resource):
    def get_all(self) -> dict:
        return self._client.request("GET", "/projects")

    def get_by_id(self, project_id: int) -> dict:
        return self._client.request("GET", f"/projects/{project_id}")

    def create(self, name: str, description: Optional[str] = None, status: Optional[str] = None) -> dict:
        data = {"name": name}
        if description is not None:
            data["description"] = description
        if status is not None:
            data["status"] = status
        return self._client.request("POST", "/projects", json=data)

    def update(self, project_id: int, **fields) -> dict:
        """Send only the given fields. Pass description=None to clear it."""
        return self._client.request("PUT", f"/projects/{project_id}", json=fields)

    def delete(self, project_id: int) -> dict:
        return self._client.request("DELETE", f"/projects/{project_id}")


class TasksAPI(_Resource):
    def get_by_project(self, project_id: int) -> dict:
        return self._client.request("GET", f"/tasks/project/{project_id}")

    def get_by_id(self, task_id: int) -> dict:
        return self._client.request("GET", f"/tasks/{task_id}")

    def create(self, project_id: int, title: str, **fields) -> dict:
        """fields: description, status, priority, dueDate."""
        return self._client.request("POST", "/tasks", json={"projectId": project_id, "title": title, **fields})

    def update(self, task_id: int, **fields) -> dict:
        return self._client.request("PUT", f"/tasks/{task_id}", json=fields)

    def delete(self, task_id: int) -> dict:
        return self._client.request("DELETE", f"/tasks/{task_id}")

    def bulk_create(self, project_id: int, tasks: list[dict]) -> dict:
        return self._client.request("POST", "/tasks/bulk", json={"projectId": project_id, "tasks": tasks})


class AIAPI(_Resource):
    def generate_tasks(self, prompt: str, project_name: Optional[str] = None) -> dict:
        data = {"prompt": prompt}
        if project_name:
            data["projectName"] = project_name
        return self._client.request("POST", "/ai/generate-tasks", json=data)

    def chat(self, message: str, context: Any = None) -> dict:
        data = {"message": message}
        if context is not None:
            data["context"] = context
        return self._client.request("POST", "/ai/chat", json=data)

    def summarize_project(self, project: dict) -> dict:
        return self._client.request("POST", "/ai/summarize-project", json={"project": project})

    def get_project_suggestions(
        self,
        project_type: Optional[str] = None,
        goals: Optional[str] = None,
        timeframe: Optional[str] = None
    ) -> dict:
        data = {"projectType": project_type, "goals": goals, "timeframe": timeframe}
        return self._client.request(
            "POST",
            "/ai/project-suggestions",
            json={k: v for k, v in data.items() if v is not None}
        )


class TaskmasterClient:
    """
    Synchronous API client.

    Args:
        base_url: API root, including the /api prefix
        user_id: Authenticated user id, sent as X-User-Id
        http_client: Pre-built httpx.Client (e.g. FastAPI's TestClient). base_url
            may then be relative, e.g. "/api"
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        user_id: Optional[int] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 30.0
    ):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self._http = http_client or httpx.Client(timeout=timeout)
        self._owns_http = http_client is None

        self.auth = AuthAPI(self)
        self.projects = ProjectsAPI(self)
        self.tasks = TasksAPI(self)
        self.ai = AIAPI(self)

    def request(self, method: str, path: str, json: Any = None) -> dict:
        headers = {}
        if self.user_id is not None:
            headers["X-User-Id"] = str(self.user_id)

        response = self._http.request(method, f"{self.base_url}{path}", json=json, headers=headers)

        try:
            body = response.json()
        except ValueError:
            body = {"success": False, "error": response.text}

        if response.is_error:
            message = body.get("error") if isinstance(body, dict) else None
            raise ApiError(response.status_code, message or response.reason_phrase)
        return body

    def close(self):
        if self._owns_http:
            self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import completion
import config
import database
from errors import AppError, UpstreamError, UpstreamFormatError, ValidationError
from models import (
    BulkTaskCreate,
    ChatRequest,
    GenerateTasksRequest,
    ProjectCreate,
    ProjectSuggestionsRequest,
    ProjectUpdate,
    SummarizeProjectRequest,
    TaskCreate,
    TaskUpdate,
    User,
    UserCreate,
)

logger = logging.getLogger("taskmaster.api")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup
    config.setup_logging()
    database.init_db()
    yield
    # Shutdown (nothing to do)

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

completion_client = completion.AnthropicCompletionClient()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if isinstance(exc, UpstreamFormatError):
        logger.error("%s %s: %s. Raw reply: %r", request.method, request.url.path, exc.message, exc.raw)
        return _error(exc.status_code, exc.message)
    if isinstance(exc, UpstreamError):
        logger.error("%s %s: AI service error: %s", request.method, request.url.path, exc.message)
        return _error(exc.status_code, "AI service error")
    logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return _error(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg', 'Invalid request')}" if field else first.get("msg", "Invalid request")
    logger.info("%s %s -> 400 %s", request.method, request.url.path, message)
    return _error(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s: unhandled error", request.method, request.url.path)
    return _error(500, "Server Error")


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> User:
    """
    Resolve the caller. Authentication happens upstream; the gateway forwards
    the authenticated user id in the X-User-Id header.
    """
    if not x_user_id or not x_user_id.isdigit():
        raise HTTPException(status_code=401, detail="Not authorized")
    user = database.get_user_db(int(x_user_id))
    if not user:
        raise HTTPException(status_code=401, detail="Not authorized")
    return user


def get_completion_client() -> completion.CompletionClient:
    return completion_client


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


router = APIRouter(prefix="/api")


@router.get("/health")
def health() -> dict:
    return {"success": True, "status": "ok"}


# Auth
@router.post("/auth/register", status_code=201)
def register(user_data: UserCreate) -> dict:
    user = database.create_user_db(user_data.email, user_data.name)
    return {"success": True, "data": user}


@router.get("/auth/me")
def me(user: User = Depends(get_current_user)) -> dict:
    return {"success": True, "data": user}


# Projects
@router.get("/projects")
def list_projects(user: User = Depends(get_current_user)) -> dict:
    projects = database.list_projects_db(user.id)
    return {"success": True, "count": len(projects), "data": projects}


@router.get("/projects/{project_id}")
def get_project(project_id: int, user: User = Depends(get_current_user)) -> dict:
    return {"success": True, "data": database.get_project_db(user.id, project_id)}


@router.post("/projects", status_code=201)
def create_project(project_data: ProjectCreate, user: User = Depends(get_current_user)) -> dict:
    project = database.create_project_db(
        user.id,
        project_data.name,
        project_data.description,
        project_data.status
    )
    return {"success": True, "data": project}


@router.put("/projects/{project_id}")
def update_project(
    project_id: int,
    project_data: ProjectUpdate,
    user: User = Depends(get_current_user)
) -> dict:
    project = database.update_project_db(
        user.id,
        project_id,
        **project_data.model_dump(exclude_unset=True)
    )
    return {"success": True, "data": project}


@router.delete("/projects/{project_id}")
def delete_project(project_id: int, user: User = Depends(get_current_user)) -> dict:
    database.delete_project_db(user.id, project_id)
    return {"success": True, "data": {}}


# Tasks
@router.get("/tasks/project/{project_id}")
def list_project_tasks(project_id: int, user: User = Depends(get_current_user)) -> dict:
    tasks = database.list_tasks_db(user.id, project_id)
    return {"success": True, "count": len(tasks), "data": tasks}


@router.post("/tasks/bulk", status_code=201)
def bulk_create_tasks(bulk_data: BulkTaskCreate, user: User = Depends(get_current_user)) -> dict:
    items = [task.model_dump() for task in bulk_data.tasks] if bulk_data.tasks is not None else None
    count = database.bulk_create_tasks_db(user.id, bulk_data.project_id, items)
    return {
        "success": True,
        "data": {"count": count, "message": f"{count} tasks created successfully"}
    }


@router.get("/tasks/{task_id}")
def get_task(task_id: int, user: User = Depends(get_current_user)) -> dict:
    return {"success": True, "data": database.get_task_db(user.id, task_id)}


@router.post("/tasks", status_code=201)
def create_task(task_data: TaskCreate, user: User = Depends(get_current_user)) -> dict:
    task = database.create_task_db(
        user.id,
        task_data.project_id,
        task_data.title,
        task_data.description,
        task_data.status,
        task_data.priority,
        task_data.due_date
    )
    return {"success": True, "data": task}


@router.put("/tasks/{task_id}")
def update_task(task_id: int, task_data: TaskUpdate, user: User = Depends(get_current_user)) -> dict:
    task = database.update_task_db(user.id, task_id, **task_data.model_dump(exclude_unset=True))
    return {"success": True, "data": task}


@router.delete("/tasks/{task_id}")
def delete_task(task_id: int, user: User = Depends(get_current_user)) -> dict:
    database.delete_task_db(user.id, task_id)
    return {"success": True, "data": {}}


# AI assistant
@router.post("/ai/generate-tasks")
async def generate_tasks_endpoint(
    request_data: GenerateTasksRequest,
    user: User = Depends(get_current_user),
    client: completion.CompletionClient = Depends(get_completion_client)
) -> dict:
    """Turn a natural-language prompt into task suggestions. Nothing is saved."""
    if not request_data.prompt:
        raise ValidationError("Please provide a prompt")
    tasks = await completion.generate_tasks(client, request_data.prompt, request_data.project_name)
    return {
        "success": True,
        "data": {
            "tasks": tasks,
            "prompt": request_data.prompt,
            "projectName": request_data.project_name or "General project",
        }
    }


@router.post("/ai/chat")
async def chat_endpoint(
    request_data: ChatRequest,
    user: User = Depends(get_current_user),
    client: completion.CompletionClient = Depends(get_completion_client)
) -> dict:
    if not request_data.message:
        raise ValidationError("Please provide a message")
    response = await completion.chat(client, request_data.message, request_data.context)
    return {
        "success": True,
        "data": {"response": response, "message": request_data.message, "timestamp": _timestamp()}
    }


@router.post("/ai/summarize-project")
async def summarize_project_endpoint(
    request_data: SummarizeProjectRequest,
    user: User = Depends(get_current_user),
    client: completion.CompletionClient = Depends(get_completion_client)
) -> dict:
    if request_data.project is None:
        raise ValidationError("Please provide project data")
    summary = await completion.summarize_project(client, request_data.project)
    return {
        "success": True,
        "data": {
            "summary": summary,
            "projectName": request_data.project.name,
            "timestamp": _timestamp(),
        }
    }


@router.post("/ai/project-suggestions")
async def project_suggestions_endpoint(
    request_data: ProjectSuggestionsRequest,
    user: User = Depends(get_current_user),
    client: completion.CompletionClient = Depends(get_completion_client)
) -> dict:
    suggestions = await completion.project_suggestions(
        client,
        request_data.project_type,
        request_data.goals,
        request_data.timeframe
    )
    return {
        "success": True,
        "data": {
            "suggestions": suggestions,
            "projectType": request_data.project_type,
            "goals": request_data.goals,
            "timeframe": request_data.timeframe,
            "timestamp": _timestamp(),
        }
    }


app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Literal, Optional, Union

ProjectStatus = Literal["active", "completed", "on-hold", "cancelled"]
TaskStatus = Literal["todo", "in-progress", "completed"]
Priority = Literal["low", "medium", "high"]


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire. Input accepts either."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(CamelModel):
    id: int
    email: str
    name: str
    created_at: str  # ISO format datetime string
    updated_at: str


class TaskProjectRef(CamelModel):
    id: int
    name: str


class Task(CamelModel):
    id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus = "todo"
    priority: Priority = "medium"
    due_date: Optional[str] = None  # ISO format: YYYY-MM-DD or full datetime
    project_id: int
    created_at: str
    updated_at: str
    project: Optional[TaskProjectRef] = None  # Only set on single-task reads/writes


class ProjectTaskSummary(CamelModel):
    """Lightweight task view embedded in project listings."""
    id: int
    title: str
    status: TaskStatus
    priority: Priority
    due_date: Optional[str] = None


class TaskCount(CamelModel):
    tasks: int = 0


class Project(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    status: ProjectStatus = "active"
    user_id: int
    created_at: str
    updated_at: str
    tasks: list[Union[Task, ProjectTaskSummary]] = []
    count: TaskCount = Field(default_factory=TaskCount, alias="_count")


# Request bodies. Required fields are Optional here so that a missing value is
# reported by the services with a readable message instead of a schema error.

class UserCreate(CamelModel):
    email: Optional[str] = None
    name: Optional[str] = None


class ProjectCreate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None


class ProjectUpdate(CamelModel):
    """Partial update. Fields not present in the payload are left untouched."""
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None


class TaskCreate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    due_date: Optional[str] = None
    project_id: Optional[int] = None


class TaskUpdate(CamelModel):
    """Partial update. projectId is not accepted: tasks never change project."""
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    due_date: Optional[str] = None


class BulkTaskItem(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    due_date: Optional[str] = None


class BulkTaskCreate(CamelModel):
    tasks: Optional[list[BulkTaskItem]] = None
    project_id: Optional[int] = None


# AI assistant

class TaskSuggestion(CamelModel):
    title: str
    description: str = ""
    priority: Priority = "medium"
    status: Literal["todo"] = "todo"


class TaskSnapshot(CamelModel):
    """Task as sent back by the client for summarizing; other fields are ignored."""
    title: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None


class ProjectSnapshot(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    tasks: Optional[list[TaskSnapshot]] = None


class GenerateTasksRequest(CamelModel):
    prompt: Optional[str] = None
    project_name: Optional[str] = None


class ChatRequest(CamelModel):
    message: Optional[str] = None
    context: Optional[Any] = None


class SummarizeProjectRequest(CamelModel):
    project: Optional[ProjectSnapshot] = None


class ProjectSuggestionsRequest(CamelModel):
    project_type: Optional[str] = None
    goals: Optional[str] = None
    timeframe: Optional[str] = None

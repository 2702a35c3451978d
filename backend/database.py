import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, get_args

import config
from errors import NotFound, ValidationError
from models import (
    Priority,
    Project,
    ProjectStatus,
    ProjectTaskSummary,
    Task,
    TaskCount,
    TaskProjectRef,
    TaskStatus,
    User,
)

DATABASE_PATH = config.DATABASE_PATH

PROJECT_STATUSES = get_args(ProjectStatus)
TASK_STATUSES = get_args(TaskStatus)
PRIORITIES = get_args(Priority)

logger = logging.getLogger("taskmaster.database")


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    # SQLite leaves foreign keys off per connection; cascades depend on it
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


def init_db():
    """Initialize database by running Alembic migrations."""
    import subprocess

    backend_dir = os.path.dirname(os.path.abspath(__file__))
    subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=backend_dir,
        env={**os.environ, "DATABASE_PATH": os.path.abspath(DATABASE_PATH)},
        check=True
    )


def _now() -> str:
    # Fixed width so text ordering matches time ordering
    return datetime.now().isoformat(timespec="microseconds")


def _require_text(value: Optional[str], message: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(message)
    return value


def _check_choice(value: Optional[str], choices: tuple, label: str) -> str:
    if value not in choices:
        raise ValidationError(f"Invalid {label} '{value}'. Expected one of: {', '.join(choices)}")
    return value


def _parse_due_date(value: Optional[str]) -> Optional[str]:
    """
    Normalize a due date to an ISO timestamp.
    Empty values mean "no due date". Accepts YYYY-MM-DD or a full ISO datetime.
    """
    if not value:
        return None
    try:
        return datetime.fromisoformat(value).isoformat()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid due date '{value}'")


SQLITE_MAX_INTEGER = 2**63 - 1


def _valid_id(value) -> bool:
    """Ids outside SQLite's signed 64-bit range cannot match any row."""
    return isinstance(value, int) and -SQLITE_MAX_INTEGER - 1 <= value <= SQLITE_MAX_INTEGER


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_task(row, with_project: bool = False) -> Task:
    """Convert a tasks row to a Task. with_project expects a joined project_name column."""
    project = None
    if with_project:
        project = TaskProjectRef(id=row["project_id"], name=row["project_name"])
    return Task(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        status=row["status"],
        priority=row["priority"],
        due_date=row["due_date"],
        project_id=row["project_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        project=project,
    )


def _row_to_summary(row) -> ProjectTaskSummary:
    return ProjectTaskSummary(
        id=row["id"],
        title=row["title"],
        status=row["status"],
        priority=row["priority"],
        due_date=row["due_date"],
    )


def _row_to_project(row, tasks: list) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        status=row["status"],
        user_id=row["user_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        tasks=tasks,
        count=TaskCount(tasks=len(tasks)),
    )


# User operations
def create_user_db(email: Optional[str], name: Optional[str]) -> User:
    """Register a user. Emails are unique (case-insensitive)."""
    email = _require_text(email, "Please provide email and name").strip().lower()
    name = _require_text(name, "Please provide email and name").strip()
    now = _now()
    with get_db() as conn:
        try:
            cursor = conn.execute(
                "INSERT INTO users (email, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (email, name, now, now)
            )
        except sqlite3.IntegrityError:
            raise ValidationError("User already exists")
        conn.commit()
    logger.info("Registered user %s", cursor.lastrowid)
    return User(id=cursor.lastrowid, email=email, name=name, created_at=now, updated_at=now)


def get_user_db(user_id: int) -> Optional[User]:
    if not _valid_id(user_id):
        return None
    with get_db() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row:
            return _row_to_user(row)
    return None


# Project operations
def _require_project(conn, user_id: int, project_id: int):
    """Fetch a project row owned by user_id or raise NotFound."""
    if not _valid_id(project_id):
        raise NotFound("Project not found")
    row = conn.execute(
        "SELECT * FROM projects WHERE id = ? AND user_id = ?",
        (project_id, user_id)
    ).fetchone()
    if not row:
        raise NotFound("Project not found")
    return row


def _load_project(conn, row) -> Project:
    """Build a Project with its full task list, newest first."""
    task_rows = conn.execute(
        "SELECT * FROM tasks WHERE project_id = ? ORDER BY created_at DESC, id DESC",
        (row["id"],)
    ).fetchall()
    return _row_to_project(row, [_row_to_task(t) for t in task_rows])


def list_projects_db(user_id: int) -> list[Project]:
    """
    All projects of a user, most recently updated first.
    Each project carries a task count and a lightweight summary of its tasks.
    """
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM projects WHERE user_id = ? ORDER BY updated_at DESC, id DESC",
            (user_id,)
        ).fetchall()
        task_rows = conn.execute(
            """SELECT t.id, t.title, t.status, t.priority, t.due_date, t.project_id
               FROM tasks t JOIN projects p ON p.id = t.project_id
               WHERE p.user_id = ?
               ORDER BY t.created_at DESC, t.id DESC""",
            (user_id,)
        ).fetchall()

    summaries: dict[int, list[ProjectTaskSummary]] = {}
    for task_row in task_rows:
        summaries.setdefault(task_row["project_id"], []).append(_row_to_summary(task_row))

    return [_row_to_project(row, summaries.get(row["id"], [])) for row in rows]


def get_project_db(user_id: int, project_id: int) -> Project:
    with get_db() as conn:
        row = _require_project(conn, user_id, project_id)
        return _load_project(conn, row)


def create_project_db(
    user_id: int,
    name: Optional[str],
    description: Optional[str] = None,
    status: Optional[str] = None
) -> Project:
    """Create a project owned by user_id. status defaults to 'active'."""
    name = _require_text(name, "Please provide a project name")
    status = _check_choice(status or "active", PROJECT_STATUSES, "project status")
    now = _now()
    with get_db() as conn:
        cursor = conn.execute(
            """INSERT INTO projects (name, description, status, user_id, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (name, description or None, status, user_id, now, now)
        )
        conn.commit()
        row = conn.execute("SELECT * FROM projects WHERE id = ?", (cursor.lastrowid,)).fetchone()
        logger.info("User %s created project %s", user_id, row["id"])
        return _load_project(conn, row)


def _project_changes(updates: dict) -> dict:
    """Validate a partial project payload. Only keys present in updates are changed."""
    changes = {}
    for field, value in updates.items():
        if field == "name":
            changes["name"] = _require_text(value, "Project name cannot be empty")
        elif field == "description":
            changes["description"] = value or None
        elif field == "status":
            changes["status"] = _check_choice(value, PROJECT_STATUSES, "project status")
    return changes


def update_project_db(user_id: int, project_id: int, **updates) -> Project:
    """
    Apply a partial update to a project.

    Args:
        user_id: Caller; the project must belong to them
        project_id: Project to update
        **updates: Supplied fields only (name, description, status). An explicit
            None or "" for description clears it.
    """
    with get_db() as conn:
        _require_project(conn, user_id, project_id)
        changes = _project_changes(updates)
        changes["updated_at"] = _now()

        set_clause = ", ".join(f"{field} = ?" for field in changes.keys())
        values = list(changes.values()) + [project_id]
        conn.execute(f"UPDATE projects SET {set_clause} WHERE id = ?", values)
        conn.commit()

        row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return _load_project(conn, row)


def delete_project_db(user_id: int, project_id: int) -> None:
    """Delete a project; its tasks go with it through ON DELETE CASCADE."""
    with get_db() as conn:
        _require_project(conn, user_id, project_id)
        conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        conn.commit()
    logger.info("User %s deleted project %s", user_id, project_id)


# Task operations
def _find_owned_task(conn, user_id: int, task_id: int):
    if not _valid_id(task_id):
        return None
    return conn.execute(
        """SELECT t.*, p.name AS project_name
           FROM tasks t JOIN projects p ON p.id = t.project_id
           WHERE t.id = ? AND p.user_id = ?""",
        (task_id, user_id)
    ).fetchone()


def _require_task(conn, user_id: int, task_id: int):
    row = _find_owned_task(conn, user_id, task_id)
    if not row:
        raise NotFound("Task not found")
    return row


def list_tasks_db(user_id: int, project_id: int) -> list[Task]:
    """Tasks of one project, newest first. The project must belong to user_id."""
    with get_db() as conn:
        _require_project(conn, user_id, project_id)
        rows = conn.execute(
            "SELECT * FROM tasks WHERE project_id = ? ORDER BY created_at DESC, id DESC",
            (project_id,)
        ).fetchall()
        return [_row_to_task(row) for row in rows]


def get_task_db(user_id: int, task_id: int) -> Task:
    with get_db() as conn:
        return _row_to_task(_require_task(conn, user_id, task_id), with_project=True)


def _task_values(
    title: Optional[str],
    description: Optional[str],
    status: Optional[str],
    priority: Optional[str],
    due_date: Optional[str],
    title_message: str = "Please provide task title and project ID"
) -> tuple:
    """Validate new-task fields and apply defaults (todo, medium, no due date)."""
    return (
        _require_text(title, title_message),
        description or None,
        _check_choice(status or "todo", TASK_STATUSES, "task status"),
        _check_choice(priority or "medium", PRIORITIES, "priority"),
        _parse_due_date(due_date),
    )


def create_task_db(
    user_id: int,
    project_id: Optional[int],
    title: Optional[str],
    description: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    due_date: Optional[str] = None
) -> Task:
    """Create a task in a project owned by user_id."""
    if not project_id:
        raise ValidationError("Please provide task title and project ID")
    values = _task_values(title, description, status, priority, due_date)
    now = _now()

    with get_db() as conn:
        _require_project(conn, user_id, project_id)
        cursor = conn.execute(
            """INSERT INTO tasks
               (title, description, status, priority, due_date, project_id, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (*values, project_id, now, now)
        )
        conn.commit()
        return _row_to_task(_require_task(conn, user_id, cursor.lastrowid), with_project=True)


def _task_changes(updates: dict) -> dict:
    """Validate a partial task payload. Only keys present in updates are changed."""
    changes = {}
    for field, value in updates.items():
        if field == "title":
            changes["title"] = _require_text(value, "Task title cannot be empty")
        elif field == "description":
            changes["description"] = value or None
        elif field == "status":
            changes["status"] = _check_choice(value, TASK_STATUSES, "task status")
        elif field == "priority":
            changes["priority"] = _check_choice(value, PRIORITIES, "priority")
        elif field == "due_date":
            changes["due_date"] = _parse_due_date(value)
    return changes


def update_task_db(user_id: int, task_id: int, **updates) -> Task:
    """
    Apply a partial update to a task.

    Args:
        user_id: Caller; the task's project must belong to them
        task_id: Task to update
        **updates: Supplied fields only (title, description, status, priority, due_date).
            An explicit None or "" clears description or due_date. project_id is
            never changed.
    """
    with get_db() as conn:
        _require_task(conn, user_id, task_id)
        changes = _task_changes(updates)
        changes["updated_at"] = _now()

        set_clause = ", ".join(f"{field} = ?" for field in changes.keys())
        values = list(changes.values()) + [task_id]
        conn.execute(f"UPDATE tasks SET {set_clause} WHERE id = ?", values)
        conn.commit()

        return _row_to_task(_require_task(conn, user_id, task_id), with_project=True)


def delete_task_db(user_id: int, task_id: int) -> None:
    with get_db() as conn:
        _require_task(conn, user_id, task_id)
        conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        conn.commit()


def bulk_create_tasks_db(user_id: int, project_id: Optional[int], tasks: list[dict]) -> int:
    """
    Insert many tasks into one project as a single all-or-nothing batch.
    Each item gets the same defaults as create_task_db. Returns the inserted count.
    """
    if not isinstance(tasks, list) or not tasks or not project_id:
        raise ValidationError("Please provide tasks array and project ID")

    with get_db() as conn:
        _require_project(conn, user_id, project_id)

        now = _now()
        rows = []
        for index, item in enumerate(tasks, start=1):
            values = _task_values(
                item.get("title"),
                item.get("description"),
                item.get("status"),
                item.get("priority"),
                item.get("due_date"),
                title_message=f"Task {index} is missing a title"
            )
            rows.append((*values, project_id, now, now))

        try:
            cursor = conn.executemany(
                """INSERT INTO tasks
                   (title, description, status, priority, due_date, project_id, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                rows
            )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
    logger.info("User %s bulk-created %d tasks in project %s", user_id, cursor.rowcount, project_id)
    return cursor.rowcount

"""Task API endpoints."""

# FastAPI Depends pattern is safe in function signatures

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field, ValidationError

from task_crafter.api.models import (
    DateRange,
    Priority,
    Recurrence,
    SyncStatusResponse,
    Task,
    TaskCreate,
    TaskFilters,
    TaskPatch,
    TaskStats,
    TaskStatus,
)
from task_crafter.factory import get_relay_client, get_repository, get_task_store
from task_crafter.relay.client import RelayClient
from task_crafter.storage.task_repository import TaskRepository
from task_crafter.store.queries import SortOrder
from task_crafter.store.task_store import DependencyCycleError, TaskStore

logger = logging.getLogger(__name__)

router = APIRouter()

StoreDep = Annotated[TaskStore, Depends(get_task_store)]


class SubTaskRequest(BaseModel):
    """Request model for adding a subtask."""

    title: str = Field(min_length=1)


class ReminderRequest(BaseModel):
    """Request model for setting or clearing a reminder."""

    reminder: datetime | None


class BulkDeleteRequest(BaseModel):
    """Request model for deleting several tasks."""

    ids: list[str]


class DeletedResponse(BaseModel):
    """API response model for removals."""

    deleted: list[str]


def _found(task: Task | None, task_id: str) -> Task:
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    return task


@router.get("/tasks", response_model=list[Task])
async def list_tasks(
    store: StoreDep,
    status: TaskStatus | None = None,
    completed: bool | None = None,
    priority: Priority | None = None,
    tag: Annotated[list[str] | None, Query()] = None,
    search: str | None = None,
    category: str | None = None,
    collaborator: str | None = None,
    due_from: datetime | None = None,
    due_to: datetime | None = None,
    sort_by: str | None = None,
    order: SortOrder = "asc",
) -> list[Task]:
    """List tasks, filtered and optionally sorted.

    Args:
        status: Only tasks with this status
        completed: Only completed (true) or open (false) tasks
        priority: Only tasks with this priority
        tag: Tags; a task matches if it has any of them
        search: Case-insensitive text in title or description
        category: Only tasks in this category
        collaborator: Only tasks shared with this user id
        due_from: Start of the due-date window (requires due_to)
        due_to: End of the due-date window (requires due_from)
        sort_by: priority, due_date, created_at or last_modified
        order: asc or desc

    Returns:
        Matching tasks
    """
    if (due_from is None) != (due_to is None):
        raise HTTPException(status_code=400, detail="due_from and due_to must be given together")

    try:
        criteria = TaskFilters(
            status=status,
            completed=completed,
            priority=priority,
            tags=tag,
            search=search,
            category=category,
            collaborator=collaborator,
            date_range=DateRange(start=due_from, end=due_to) if due_from and due_to else None,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    tasks = store.filter(criteria)
    if sort_by:
        try:
            tasks = store.sort(tasks, sort_by, order)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
    return tasks


@router.post("/tasks", response_model=Task, status_code=201)
async def create_task(store: StoreDep, request: TaskCreate) -> Task:
    """Create a task."""
    return store.create(request)


@router.get("/tasks/overdue", response_model=list[Task])
async def overdue_tasks(store: StoreDep) -> list[Task]:
    """Incomplete tasks past their due date."""
    return store.overdue()


@router.get("/tasks/upcoming", response_model=list[Task])
async def upcoming_tasks(store: StoreDep, days: Annotated[float, Query(gt=0)] = 7) -> list[Task]:
    """Tasks due within the next N days."""
    return store.upcoming_deadlines(days)


@router.get("/tasks/category/{category}", response_model=list[Task])
async def tasks_by_category(store: StoreDep, category: str) -> list[Task]:
    return store.by_category(category)


@router.delete("/tasks/completed", response_model=DeletedResponse)
async def clear_completed(store: StoreDep) -> DeletedResponse:
    """Remove all completed tasks."""
    removed = store.clear_completed()
    return DeletedResponse(deleted=[t.id for t in removed])


@router.post("/tasks/bulk-delete", response_model=DeletedResponse)
async def delete_multiple(store: StoreDep, request: BulkDeleteRequest) -> DeletedResponse:
    """Remove the given tasks; unknown ids are ignored."""
    removed = store.delete_multiple(request.ids)
    return DeletedResponse(deleted=[t.id for t in removed])


@router.get("/tasks/{task_id}", response_model=Task)
async def get_task(store: StoreDep, task_id: str) -> Task:
    return _found(store.get(task_id), task_id)


@router.patch("/tasks/{task_id}", response_model=Task)
async def update_task(store: StoreDep, task_id: str, request: TaskPatch) -> Task:
    """Apply a partial update to a task.

    Raises:
        HTTPException: If task not found
    """
    return _found(store.update(task_id, request), task_id)


@router.delete("/tasks/{task_id}", response_model=Task)
async def delete_task(store: StoreDep, task_id: str) -> Task:
    return _found(store.delete(task_id), task_id)


@router.post("/tasks/{task_id}/toggle", response_model=Task)
async def toggle_task(store: StoreDep, task_id: str) -> Task:
    return _found(store.toggle_completion(task_id), task_id)


@router.post("/tasks/{task_id}/duplicate", response_model=Task, status_code=201)
async def duplicate_task(store: StoreDep, task_id: str) -> Task:
    return _found(store.duplicate(task_id), task_id)


@router.post("/tasks/{task_id}/archive", response_model=Task)
async def archive_task(store: StoreDep, task_id: str) -> Task:
    return _found(store.archive(task_id), task_id)


@router.put("/tasks/{task_id}/reminder", response_model=Task)
async def set_reminder(store: StoreDep, task_id: str, request: ReminderRequest) -> Task:
    return _found(store.set_reminder(task_id, request.reminder), task_id)


@router.put("/tasks/{task_id}/recurrence", response_model=Task)
async def set_recurrence(store: StoreDep, task_id: str, request: Recurrence) -> Task:
    return _found(store.set_recurrence(task_id, request), task_id)


@router.delete("/tasks/{task_id}/recurrence", response_model=Task)
async def clear_recurrence(store: StoreDep, task_id: str) -> Task:
    return _found(store.set_recurrence(task_id, None), task_id)


@router.put("/tasks/{task_id}/tags/{tag}", response_model=Task)
async def add_tag(store: StoreDep, task_id: str, tag: str) -> Task:
    return _found(store.add_tag(task_id, tag), task_id)


@router.delete("/tasks/{task_id}/tags/{tag}", response_model=Task)
async def remove_tag(store: StoreDep, task_id: str, tag: str) -> Task:
    return _found(store.remove_tag(task_id, tag), task_id)


@router.post("/tasks/{task_id}/subtasks", response_model=Task, status_code=201)
async def add_subtask(store: StoreDep, task_id: str, request: SubTaskRequest) -> Task:
    return _found(store.add_subtask(task_id, request.title), task_id)


@router.post("/tasks/{task_id}/subtasks/{subtask_id}/toggle", response_model=Task)
async def toggle_subtask(store: StoreDep, task_id: str, subtask_id: str) -> Task:
    return _found(store.toggle_subtask(task_id, subtask_id), task_id)


@router.put("/tasks/{task_id}/dependencies/{dependency_id}", response_model=Task)
async def add_dependency(store: StoreDep, task_id: str, dependency_id: str) -> Task:
    """Make a task depend on another task id.

    Raises:
        HTTPException: 404 if task not found, 409 if the dependency forms a cycle
    """
    try:
        task = store.add_dependency(task_id, dependency_id)
    except DependencyCycleError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return _found(task, task_id)


@router.delete("/tasks/{task_id}/dependencies/{dependency_id}", response_model=Task)
async def remove_dependency(store: StoreDep, task_id: str, dependency_id: str) -> Task:
    return _found(store.remove_dependency(task_id, dependency_id), task_id)


@router.put("/tasks/{task_id}/collaborators/{user_id}", response_model=Task)
async def add_collaborator(store: StoreDep, task_id: str, user_id: str) -> Task:
    return _found(store.add_collaborator(task_id, user_id), task_id)


@router.delete("/tasks/{task_id}/collaborators/{user_id}", response_model=Task)
async def remove_collaborator(store: StoreDep, task_id: str, user_id: str) -> Task:
    return _found(store.remove_collaborator(task_id, user_id), task_id)


@router.get("/stats", response_model=TaskStats)
async def task_stats(store: StoreDep) -> TaskStats:
    """Dashboard statistics."""
    return store.stats()


@router.get("/sync", response_model=SyncStatusResponse)
async def sync_status(
    relay_client: Annotated[RelayClient, Depends(get_relay_client)],
    repository: Annotated[TaskRepository, Depends(get_repository)],
    request: Request,
) -> SyncStatusResponse:
    """Relay connection state and persistence timestamps."""
    return SyncStatusResponse(
        relay_state=relay_client.state.value,
        last_update=relay_client.last_update,
        last_saved=repository.last_saved(),
        sync_policy=request.app.state.config.sync_policy,
    )

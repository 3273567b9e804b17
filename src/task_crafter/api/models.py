"""API and domain models for TaskCrafter."""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

Priority = Literal["low", "medium", "high"]
TaskStatus = Literal["todo", "in_progress", "completed", "archived"]
Frequency = Literal["daily", "weekly", "monthly"]
UpdateKind = Literal["add", "update", "delete"]


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class _CamelModel(BaseModel):
    """Base model whose JSON form uses camelCase keys (``dueDate``, ``createdAt``)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubTask(_CamelModel):
    """Checklist item nested in a task."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    completed: bool = False


class Recurrence(_CamelModel):
    """Repeat configuration for a task."""

    model_config = ConfigDict(frozen=True)

    frequency: Frequency
    interval: int = Field(default=1, ge=1)
    end_date: UtcDatetime | None = None


class Task(_CamelModel):
    """Immutable snapshot of a task as owned by the task store."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = ""
    priority: Priority = "medium"
    completed: bool = False
    status: TaskStatus = "todo"
    created_at: UtcDatetime
    due_date: UtcDatetime | None = None
    tags: list[str] = Field(default_factory=list)
    archived: bool = False
    reminder: UtcDatetime | None = None
    last_modified: UtcDatetime | None = None
    category: str | None = None
    estimated_time: int | None = Field(default=None, ge=0)  # minutes
    actual_time: int | None = Field(default=None, ge=0)  # minutes
    subtasks: list[SubTask] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    attachments: list[str] = Field(default_factory=list)
    collaborators: list[str] = Field(default_factory=list)
    notes: str | None = None
    recurrence: Recurrence | None = None

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON shape used on disk and on the wire."""
        return self.model_dump(mode="json", by_alias=True)


class TaskCreate(_CamelModel):
    """Fields a caller supplies to create a task.

    ``id``, ``createdAt`` and ``lastModified`` are always assigned by the store.
    """

    title: str = Field(min_length=1)
    description: str = ""
    priority: Priority = "medium"
    completed: bool = False
    due_date: UtcDatetime | None = None
    tags: list[str] = Field(default_factory=list)
    reminder: UtcDatetime | None = None
    category: str | None = None
    estimated_time: int | None = Field(default=None, ge=0)
    actual_time: int | None = Field(default=None, ge=0)
    subtasks: list[SubTask] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    attachments: list[str] = Field(default_factory=list)
    collaborators: list[str] = Field(default_factory=list)
    notes: str | None = None
    recurrence: Recurrence | None = None


_NON_NULLABLE_PATCH_FIELDS = (
    "title",
    "description",
    "priority",
    "completed",
    "status",
    "archived",
    "tags",
    "subtasks",
    "dependencies",
    "attachments",
    "collaborators",
)


class TaskPatch(_CamelModel):
    """Partial update for a task. Only explicitly set fields are merged."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    priority: Priority | None = None
    completed: bool | None = None
    status: TaskStatus | None = None
    due_date: UtcDatetime | None = None
    tags: list[str] | None = None
    archived: bool | None = None
    reminder: UtcDatetime | None = None
    category: str | None = None
    estimated_time: int | None = Field(default=None, ge=0)
    actual_time: int | None = Field(default=None, ge=0)
    subtasks: list[SubTask] | None = None
    dependencies: list[str] | None = None
    attachments: list[str] | None = None
    collaborators: list[str] | None = None
    notes: str | None = None
    recurrence: Recurrence | None = None

    @model_validator(mode="after")
    def reject_null_required(self) -> "TaskPatch":
        for name in _NON_NULLABLE_PATCH_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        """Explicitly set fields, keyed by field name, values kept as models."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class DateRange(BaseModel):
    """Inclusive due-date window."""

    start: UtcDatetime
    end: UtcDatetime


class TaskFilters(BaseModel):
    """Filter criteria. Unset criteria match every task."""

    status: TaskStatus | None = None
    completed: bool | None = None
    priority: Priority | None = None
    tags: list[str] | None = None
    search: str | None = None
    category: str | None = None
    collaborator: str | None = None
    date_range: DateRange | None = None


class TaskUpdateMessage(_CamelModel):
    """Change notification exchanged through the relay."""

    type: UpdateKind
    task: Task
    timestamp: UtcDatetime


class TaskStats(BaseModel):
    """Dashboard counters derived from the collection."""

    total: int
    completed: int
    pending: int
    completion_rate: int  # percent
    by_priority: dict[str, int]
    created_today: int
    created_yesterday: int
    created_last_week: int
    today_completion_rate: int
    yesterday_completion_rate: int
    completion_trend: int
    open_high_priority: int


class SyncStatusResponse(BaseModel):
    """API response model for relay/persistence status."""

    relay_state: str
    last_update: datetime | None
    last_saved: datetime | None
    sync_policy: str

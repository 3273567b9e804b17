"""In-memory task store: the single authority for a session's tasks."""

import itertools
import logging
import threading
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any, Protocol

from task_crafter.api.models import (
    Recurrence,
    SubTask,
    Task,
    TaskCreate,
    TaskFilters,
    TaskPatch,
    TaskStats,
    TaskUpdateMessage,
    UpdateKind,
)
from task_crafter.storage.task_repository import TaskPersistence
from task_crafter.store import queries

logger = logging.getLogger(__name__)

COPY_PREFIX = "Copy of "


class UpdateNotifier(Protocol):
    """Receives change notifications after each mutation. Must not block."""

    def notify(self, kind: UpdateKind, task: Task) -> None:
        """Publish a change of the given kind."""
        ...


class DependencyCycleError(ValueError):
    """Raised when a dependency would make a task (transitively) depend on itself."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Dependency cycle: {' -> '.join(cycle)}")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class IdGenerator:
    """Process-unique ids: monotonic counter plus a random suffix."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            n = next(self._counter)
        return f"{n:x}{uuid.uuid4().hex[:10]}"


class TaskStore:
    """Owns the ordered task collection (most recent first).

    Mutations look up tasks by id and are silent no-ops returning None when the
    id is unknown. Every effective mutation saves a snapshot and notifies the
    relay; queries never have side effects.
    """

    def __init__(
        self,
        repository: TaskPersistence,
        notifier: UpdateNotifier,
        *,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] | None = None,
        reject_dependency_cycles: bool = False,
    ) -> None:
        """Initialize store and load the persisted snapshot.

        Args:
            repository: Persistence used for load on startup and save after mutations
            notifier: Relay notifier, called fire-and-forget
            clock: Source of "now" (UTC)
            id_factory: Id generator for tasks and subtasks
            reject_dependency_cycles: Refuse dependencies that would form a cycle
        """
        self._repository = repository
        self._notifier = notifier
        self._clock = clock
        self._new_id = id_factory or IdGenerator()
        self._reject_cycles = reject_dependency_cycles
        self._lock = threading.RLock()
        self._tasks: list[Task] = repository.load()

    # ------------------------------------------------------------------
    # Reads

    @property
    def tasks(self) -> list[Task]:
        """Snapshot copy of the collection."""
        with self._lock:
            return list(self._tasks)

    def get(self, task_id: str) -> Task | None:
        with self._lock:
            return self._find(task_id)

    def filter(self, criteria: TaskFilters | None = None) -> list[Task]:
        return queries.filter_tasks(self.tasks, criteria or TaskFilters())

    @staticmethod
    def sort(tasks: Iterable[Task], key: str, order: queries.SortOrder = "asc") -> list[Task]:
        return queries.sort_tasks(tasks, key, order)

    def by_category(self, category: str) -> list[Task]:
        return queries.by_category(self.tasks, category)

    def upcoming_deadlines(self, days: float) -> list[Task]:
        return queries.upcoming_deadlines(self.tasks, days, self._clock())

    def overdue(self) -> list[Task]:
        return queries.overdue(self.tasks, self._clock())

    def stats(self) -> TaskStats:
        return queries.compute_stats(self.tasks, self._clock())

    # ------------------------------------------------------------------
    # Core mutations

    def create(self, data: TaskCreate) -> Task:
        """Create a task and insert it at the front of the collection."""
        with self._lock:
            now = self._clock()
            task = Task(
                **data.model_dump(exclude={"subtasks", "recurrence"}),
                subtasks=data.subtasks,
                recurrence=data.recurrence,
                id=self._unique_id(),
                created_at=now,
                last_modified=now,
                status="todo",
                archived=False,
            )
            self._tasks.insert(0, task)
            self._commit()
            logger.info(f"[TaskStore] Created task {task.id}: {task.title!r}")
        self._notify("add", task)
        return task

    def update(self, task_id: str, patch: TaskPatch) -> Task | None:
        """Merge the explicitly set patch fields over the task."""
        return self._apply(task_id, patch.changes())

    def delete(self, task_id: str) -> Task | None:
        """Remove a task; returns the removed task."""
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return None
            self._tasks.remove(task)
            self._commit()
            logger.info(f"[TaskStore] Deleted task {task_id}")
        self._notify("delete", task)
        return task

    def delete_multiple(self, task_ids: Iterable[str]) -> list[Task]:
        """Remove all tasks whose id is given; one delete notification each."""
        ids = set(task_ids)
        return self._remove_where(lambda t: t.id in ids)

    def clear_completed(self) -> list[Task]:
        """Remove every completed task; one delete notification each."""
        return self._remove_where(lambda t: t.completed)

    # ------------------------------------------------------------------
    # Convenience mutations (all go through _apply)

    def toggle_completion(self, task_id: str) -> Task | None:
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return None
            return self._apply(task_id, {"completed": not task.completed})

    def duplicate(self, task_id: str) -> Task | None:
        """Create a copy of a task with a fresh id, reset completion and archive flags."""
        with self._lock:
            source = self._find(task_id)
            if source is None:
                return None
            fields = source.model_dump(include=set(TaskCreate.model_fields))
            fields.update(
                title=f"{COPY_PREFIX}{source.title}",
                completed=False,
                subtasks=source.subtasks,
                recurrence=source.recurrence,
            )
            return self.create(TaskCreate(**fields))

    def archive(self, task_id: str) -> Task | None:
        return self._apply(task_id, {"archived": True})

    def set_reminder(self, task_id: str, when: datetime | None) -> Task | None:
        return self.update(task_id, TaskPatch(reminder=when))

    def set_recurrence(self, task_id: str, recurrence: Recurrence | None) -> Task | None:
        return self._apply(task_id, {"recurrence": recurrence})

    def add_tag(self, task_id: str, tag: str) -> Task | None:
        return self._add_member(task_id, "tags", tag)

    def remove_tag(self, task_id: str, tag: str) -> Task | None:
        return self._remove_member(task_id, "tags", tag)

    def add_collaborator(self, task_id: str, user_id: str) -> Task | None:
        return self._add_member(task_id, "collaborators", user_id)

    def remove_collaborator(self, task_id: str, user_id: str) -> Task | None:
        return self._remove_member(task_id, "collaborators", user_id)

    def add_dependency(self, task_id: str, dependency_id: str) -> Task | None:
        """Make task_id depend on dependency_id (which need not exist).

        Raises:
            DependencyCycleError: If cycle rejection is enabled and the edge closes a loop
        """
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return None
            if self._reject_cycles and dependency_id not in task.dependencies:
                cycle = queries.find_dependency_cycle(self._tasks, task_id, dependency_id)
                if cycle:
                    raise DependencyCycleError(cycle)
            return self._add_member(task_id, "dependencies", dependency_id)

    def remove_dependency(self, task_id: str, dependency_id: str) -> Task | None:
        return self._remove_member(task_id, "dependencies", dependency_id)

    def add_subtask(self, task_id: str, title: str) -> Task | None:
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return None
            subtask = SubTask(id=self._new_id(), title=title, completed=False)
            return self._apply(task_id, {"subtasks": [*task.subtasks, subtask]})

    def toggle_subtask(self, task_id: str, subtask_id: str) -> Task | None:
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return None
            subtasks = [
                st.model_copy(update={"completed": not st.completed}) if st.id == subtask_id else st
                for st in task.subtasks
            ]
            return self._apply(task_id, {"subtasks": subtasks})

    # ------------------------------------------------------------------
    # Remote sync

    def apply_remote(self, message: TaskUpdateMessage) -> bool:
        """Apply a change from another session using last-write-wins.

        The remote task replaces the local one only if it is unknown locally or
        its lastModified is newer. Applied changes are saved but not re-sent
        to the relay.

        Returns:
            True if the local collection changed
        """
        remote = message.task
        with self._lock:
            local = self._find(remote.id)
            if message.type == "delete":
                if local is None or _is_newer(local, remote):
                    return False
                self._tasks.remove(local)
            elif local is None:
                self._tasks.insert(0, remote)
            elif _is_newer(remote, local):
                self._tasks[self._tasks.index(local)] = remote
            else:
                return False
            self._commit()
        logger.info(f"[TaskStore] Applied remote {message.type} for task {remote.id}")
        return True

    # ------------------------------------------------------------------
    # Internals

    def _find(self, task_id: str) -> Task | None:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def _unique_id(self) -> str:
        while True:
            candidate = self._new_id()
            if self._find(candidate) is None:
                return candidate

    def _apply(self, task_id: str, changes: dict[str, Any]) -> Task | None:
        with self._lock:
            task = self._find(task_id)
            if task is None:
                logger.debug(f"[TaskStore] Ignoring update for unknown task {task_id}")
                return None
            merged = task.model_dump()
            merged.update(changes)
            merged["last_modified"] = max(self._clock(), task.created_at)
            updated = Task.model_validate(merged)
            self._tasks[self._tasks.index(task)] = updated
            self._commit()
        self._notify("update", updated)
        return updated

    def _add_member(self, task_id: str, field: str, value: str) -> Task | None:
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return None
            current: list[str] = getattr(task, field)
            if value in current:
                return task
            return self._apply(task_id, {field: [*current, value]})

    def _remove_member(self, task_id: str, field: str, value: str) -> Task | None:
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return None
            current: list[str] = getattr(task, field)
            if value not in current:
                return task
            return self._apply(task_id, {field: [v for v in current if v != value]})

    def _remove_where(self, predicate: Callable[[Task], bool]) -> list[Task]:
        with self._lock:
            removed = [t for t in self._tasks if predicate(t)]
            if not removed:
                return []
            self._tasks = [t for t in self._tasks if not predicate(t)]
            self._commit()
            logger.info(f"[TaskStore] Removed {len(removed)} tasks")
        for task in removed:
            self._notify("delete", task)
        return removed

    def _commit(self) -> None:
        self._repository.save(self._tasks)

    def _notify(self, kind: UpdateKind, task: Task) -> None:
        try:
            self._notifier.notify(kind, task)
        except Exception as e:
            logger.warning(f"[TaskStore] Relay notification failed: {e}")


def _is_newer(a: Task, b: Task) -> bool:
    """True if a was modified after b."""
    return (a.last_modified or a.created_at) > (b.last_modified or b.created_at)

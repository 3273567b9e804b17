"""Derived views over a task collection.

Every function here is pure: it reads the tasks it is given and returns new
lists or values without touching the store, persistence or the relay.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Literal

from task_crafter.api.models import Task, TaskFilters, TaskStats

SortKey = Literal["priority", "due_date", "created_at", "last_modified"]
SortOrder = Literal["asc", "desc"]

PRIORITY_RANK = {"low": 1, "medium": 2, "high": 3}

# camelCase spellings used by the web client
SORT_KEY_ALIASES: dict[str, SortKey] = {
    "dueDate": "due_date",
    "createdAt": "created_at",
    "lastModified": "last_modified",
}


def matches(task: Task, criteria: TaskFilters) -> bool:
    """Return True if the task satisfies every criterion that is set."""
    if criteria.status is not None and task.status != criteria.status:
        return False
    if criteria.completed is not None and task.completed != criteria.completed:
        return False
    if criteria.priority is not None and task.priority != criteria.priority:
        return False
    if criteria.tags and not set(criteria.tags) & set(task.tags):
        return False
    if criteria.search:
        needle = criteria.search.lower()
        if needle not in task.title.lower() and needle not in task.description.lower():
            return False
    if criteria.category is not None and task.category != criteria.category:
        return False
    if criteria.collaborator is not None and criteria.collaborator not in task.collaborators:
        return False
    if criteria.date_range is not None and task.due_date is not None:
        # Tasks without a due date are not excluded by a date range
        if not criteria.date_range.start <= task.due_date <= criteria.date_range.end:
            return False
    return True


def filter_tasks(tasks: Iterable[Task], criteria: TaskFilters) -> list[Task]:
    """Return the tasks matching all set criteria, in collection order."""
    return [task for task in tasks if matches(task, criteria)]


def sort_tasks(tasks: Iterable[Task], key: str, order: SortOrder = "asc") -> list[Task]:
    """Return a stably sorted copy of the tasks.

    Tasks missing the sort value (no due date, no last-modified time) are
    always placed last, in their original relative order, whatever the order.

    Raises:
        ValueError: If the sort key is unknown
    """
    sort_key = SORT_KEY_ALIASES.get(key, key)
    if sort_key not in ("priority", "due_date", "created_at", "last_modified"):
        raise ValueError(f"Unknown sort key: {key}")
    if order not in ("asc", "desc"):
        raise ValueError(f"Unknown sort order: {order}")

    present: list[Task] = []
    missing: list[Task] = []
    for task in tasks:
        if sort_key == "priority" or getattr(task, sort_key) is not None:
            present.append(task)
        else:
            missing.append(task)

    if sort_key == "priority":
        present.sort(key=lambda t: PRIORITY_RANK[t.priority], reverse=order == "desc")
    else:
        present.sort(key=lambda t: getattr(t, sort_key), reverse=order == "desc")
    return present + missing


def by_category(tasks: Iterable[Task], category: str) -> list[Task]:
    return [task for task in tasks if task.category == category]


def upcoming_deadlines(tasks: Iterable[Task], days: float, now: datetime) -> list[Task]:
    """Tasks due after ``now`` and no later than ``days`` from now."""
    horizon = now + timedelta(days=days)
    return [task for task in tasks if task.due_date is not None and now < task.due_date <= horizon]


def overdue(tasks: Iterable[Task], now: datetime) -> list[Task]:
    """Incomplete tasks whose due date has passed."""
    return [
        task
        for task in tasks
        if task.due_date is not None and task.due_date < now and not task.completed
    ]


def _completion_rate(tasks: Sequence[Task]) -> int:
    if not tasks:
        return 0
    return round(sum(1 for t in tasks if t.completed) / len(tasks) * 100)


def _created_between(tasks: Sequence[Task], start: datetime, end: datetime) -> list[Task]:
    return [task for task in tasks if start <= task.created_at <= end]


def compute_stats(tasks: Sequence[Task], now: datetime) -> TaskStats:
    """Dashboard statistics: totals, priority mix and day-over-day trends."""
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    today_end = today_start + timedelta(days=1) - timedelta(microseconds=1)
    yesterday_start = today_start - timedelta(days=1)
    yesterday_end = today_start - timedelta(microseconds=1)
    week_start = today_start - timedelta(days=7)

    completed = sum(1 for t in tasks if t.completed)
    today = _created_between(tasks, today_start, today_end)
    yesterday = _created_between(tasks, yesterday_start, yesterday_end)
    last_week = _created_between(tasks, week_start, now)
    today_rate = _completion_rate(today)
    yesterday_rate = _completion_rate(yesterday)

    return TaskStats(
        total=len(tasks),
        completed=completed,
        pending=len(tasks) - completed,
        completion_rate=_completion_rate(tasks),
        by_priority={
            p: sum(1 for t in tasks if t.priority == p) for p in ("high", "medium", "low")
        },
        created_today=len(today),
        created_yesterday=len(yesterday),
        created_last_week=len(last_week),
        today_completion_rate=today_rate,
        yesterday_completion_rate=yesterday_rate,
        completion_trend=today_rate - yesterday_rate,
        open_high_priority=sum(1 for t in tasks if t.priority == "high" and not t.completed),
    )


def find_dependency_cycle(
    tasks: Iterable[Task], task_id: str, dependency_id: str
) -> list[str] | None:
    """Check whether adding ``task_id -> dependency_id`` would close a cycle.

    Walks the dependency graph from ``dependency_id``; if ``task_id`` is
    reachable the new edge would make a loop.

    Returns:
        The cycle as a list of ids starting and ending with ``task_id``, or None
    """
    if task_id == dependency_id:
        return [task_id, task_id]

    graph = {task.id: task.dependencies for task in tasks}
    stack: list[tuple[str, list[str]]] = [(dependency_id, [task_id, dependency_id])]
    seen: set[str] = set()
    while stack:
        node, path = stack.pop()
        if node in seen:
            continue
        seen.add(node)
        for nxt in graph.get(node, []):
            if nxt == task_id:
                return path + [task_id]
            if nxt not in seen:
                stack.append((nxt, path + [nxt]))
    return None

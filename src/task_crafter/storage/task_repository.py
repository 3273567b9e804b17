"""Best-effort persistence of the task collection."""

import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import ValidationError

from task_crafter.api.models import Task
from task_crafter.storage.local_storage import LocalStorage

logger = logging.getLogger(__name__)

TASKS_KEY = "tasks"
BACKUP_KEY = "tasks_backup"
LAST_SAVED_KEY = "tasks_last_saved"


class TaskPersistence(Protocol):
    """Protocol for loading and saving task snapshots."""

    def load(self) -> list[Task]:
        """Load the last saved snapshot, or an empty list."""
        ...

    def save(self, tasks: Sequence[Task]) -> None:
        """Persist a snapshot of the collection."""
        ...


class TaskRepository:
    """Stores task snapshots in a LocalStorage with a one-deep backup slot.

    Nothing here raises to the caller: invalid snapshots load as empty and
    failed writes are rolled back from the backup and logged.
    """

    def __init__(self, storage: LocalStorage) -> None:
        """Initialize repository on top of a key-value storage."""
        self._storage = storage

    def load(self) -> list[Task]:
        """Load tasks; the whole snapshot is discarded if any record is invalid."""
        try:
            raw = self._storage.get_item(TASKS_KEY)
        except UnicodeDecodeError as e:
            logger.error(f"[TaskRepository] Stored tasks are not valid UTF-8, starting empty: {e}")
            return []
        except OSError as e:
            logger.error(f"[TaskRepository] Failed to read tasks: {e}", exc_info=True)
            return []
        if raw is None:
            return []

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"[TaskRepository] Stored tasks are not valid JSON, starting empty: {e}")
            return []

        if not isinstance(payload, list):
            logger.error(
                f"[TaskRepository] Stored tasks are not a list ({type(payload).__name__}), "
                "starting empty"
            )
            return []

        tasks: list[Task] = []
        for index, record in enumerate(payload):
            if not _has_required_fields(record):
                logger.error(
                    f"[TaskRepository] Record {index} lacks id/title/completed, starting empty"
                )
                return []
            try:
                tasks.append(Task.model_validate(record))
            except ValidationError as e:
                logger.error(f"[TaskRepository] Record {index} is invalid, starting empty: {e}")
                return []

        logger.info(f"[TaskRepository] Loaded {len(tasks)} tasks")
        return tasks

    def save(self, tasks: Sequence[Task]) -> None:
        """Write a snapshot, keeping the previous one in the backup slot."""
        snapshot = json.dumps([task.to_json_dict() for task in tasks])
        try:
            previous = self._read_previous()
            self._storage.set_item(BACKUP_KEY, previous if previous is not None else "[]")
            self._storage.set_item(TASKS_KEY, snapshot)
            self._storage.set_item(LAST_SAVED_KEY, datetime.now(UTC).isoformat())
        except OSError as e:
            logger.error(f"[TaskRepository] Failed to save tasks: {e}", exc_info=True)
            self._restore_backup()

    def last_saved(self) -> datetime | None:
        """Time of the last successful save, if any."""
        try:
            raw = self._storage.get_item(LAST_SAVED_KEY)
            return datetime.fromisoformat(raw) if raw else None
        except (OSError, ValueError) as e:
            logger.warning(f"[TaskRepository] Unreadable save timestamp: {e}")
            return None

    def _read_previous(self) -> str | None:
        try:
            return self._storage.get_item(TASKS_KEY)
        except UnicodeDecodeError as e:
            logger.warning(f"[TaskRepository] Previous snapshot unreadable, not backed up: {e}")
            return None

    def _restore_backup(self) -> None:
        try:
            backup = self._storage.get_item(BACKUP_KEY)
            if backup is not None:
                self._storage.set_item(TASKS_KEY, backup)
                logger.info("[TaskRepository] Restored tasks from backup")
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"[TaskRepository] Failed to restore backup: {e}")


def _has_required_fields(record: Any) -> bool:
    return (
        isinstance(record, dict)
        and isinstance(record.get("id"), str)
        and bool(record["id"])
        and isinstance(record.get("title"), str)
        and bool(record["title"])
        and isinstance(record.get("completed"), bool)
    )

"""Test fixtures for TaskCrafter."""

from datetime import UTC, datetime
from pathlib import Path

import pytest

from task_crafter.storage.local_storage import LocalStorage
from task_crafter.storage.task_repository import TaskRepository
from task_crafter.store.task_store import TaskStore

from .fakes import FakeClock, RecordingNotifier


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 14, 12, 0, tzinfo=UTC))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    """Key-value storage in a temporary directory."""
    return LocalStorage(tmp_path / "storage")


@pytest.fixture
def repository(storage: LocalStorage) -> TaskRepository:
    return TaskRepository(storage)


@pytest.fixture
def store(repository: TaskRepository, notifier: RecordingNotifier, clock: FakeClock) -> TaskStore:
    """Empty task store with recording notifier and fake clock."""
    return TaskStore(repository, notifier, clock=clock)

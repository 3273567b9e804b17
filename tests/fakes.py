"""Test doubles shared across test modules."""

from datetime import datetime, timedelta

from task_crafter.api.models import Task, UpdateKind


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    """Captures relay notifications instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[tuple[UpdateKind, Task]] = []

    def notify(self, kind: UpdateKind, task: Task) -> None:
        self.sent.append((kind, task))

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.sent]

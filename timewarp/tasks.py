from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Iterable, Mapping
import uuid

logger = logging.getLogger(__name__)

PROCRASTINATION_STEP = 20
PROCRASTINATION_MAX = 100
IMPORTANCE_MIN = 1
IMPORTANCE_MAX = 5
DEFAULT_IMPORTANCE = 3
EDITABLE_FIELDS = ("title", "description", "importance", "deadline")


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    RUNNING_AWAY = "running-away"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.RUNNING_AWAY)


class TransitionOutcome(str, Enum):
    OK = "ok"
    UNCHANGED = "unchanged"
    UNKNOWN_TASK = "unknown-task"
    ILLEGAL = "illegal-transition"


def clamp_importance(value: int) -> int:
    return min(IMPORTANCE_MAX, max(IMPORTANCE_MIN, int(value)))


def ensure_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    return ensure_aware(datetime.fromisoformat(str(value)))


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    description: str
    status: TaskStatus
    importance: int
    created_at: datetime
    deadline: datetime | None = None
    procrastination_level: int = 0
    time_spent: float = 0.0
    completed_at: datetime | None = None
    last_worked_on: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "importance": self.importance,
            "created_at": _iso(self.created_at),
            "deadline": _iso(self.deadline),
            "procrastination_level": self.procrastination_level,
            "time_spent": self.time_spent,
            "completed_at": _iso(self.completed_at),
            "last_worked_on": _iso(self.last_worked_on),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Task:
        created_at = _parse(data.get("created_at"))
        if created_at is None:
            raise ValueError(f"task {data.get('id')!r} is missing created_at")
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            status=TaskStatus(str(data.get("status", TaskStatus.PENDING.value))),
            importance=clamp_importance(data.get("importance", DEFAULT_IMPORTANCE)),
            created_at=created_at,
            deadline=_parse(data.get("deadline")),
            procrastination_level=min(
                PROCRASTINATION_MAX, max(0, int(data.get("procrastination_level", 0)))
            ),
            time_spent=max(0.0, float(data.get("time_spent", 0.0))),
            completed_at=_parse(data.get("completed_at")),
            last_worked_on=_parse(data.get("last_worked_on")),
        )


@dataclass(frozen=True)
class Transition:
    task_id: str
    outcome: TransitionOutcome
    before: Task | None = None
    after: Task | None = None

    @property
    def changed(self) -> bool:
        return self.outcome == TransitionOutcome.OK

    @property
    def entered(self) -> TaskStatus | None:
        """Status the task moved into, when this transition changed it."""
        if not self.changed or self.after is None:
            return None
        if self.before is not None and self.before.status == self.after.status:
            return None
        return self.after.status


class TaskLifecycleAutomaton:
    """Owns every task and decides which status moves are legal.

    Completed and running-away tasks are frozen: edits, completion and
    procrastination on them are illegal. Work time can still be recorded
    against them so a session that outlives its task's completion is billed.
    """

    def __init__(self, procrastination_step: int = PROCRASTINATION_STEP) -> None:
        self.procrastination_step = max(1, int(procrastination_step))
        self._tasks: dict[str, Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def load(self, tasks: Iterable[Task]) -> None:
        self._tasks = {task.id: task for task in tasks}

    def create(
        self,
        title: str,
        now: datetime,
        description: str = "",
        importance: int = DEFAULT_IMPORTANCE,
        deadline: datetime | None = None,
    ) -> Task:
        task = Task(
            id=uuid.uuid4().hex,
            title=title.strip(),
            description=description.strip(),
            status=TaskStatus.PENDING,
            importance=clamp_importance(importance),
            created_at=now,
            deadline=ensure_aware(deadline),
        )
        self._tasks[task.id] = task
        logger.debug("task %s created: %s", task.id, task.title)
        return task

    def update(self, task_id: str, patch: Mapping[str, Any]) -> Transition:
        task = self._tasks.get(task_id)
        if task is None:
            return Transition(task_id, TransitionOutcome.UNKNOWN_TASK)
        if task.status.terminal:
            return Transition(task_id, TransitionOutcome.ILLEGAL, task, task)

        changes: dict[str, Any] = {}
        for key in EDITABLE_FIELDS:
            if key not in patch:
                continue
            value = patch[key]
            if key == "title":
                title = str(value or "").strip()
                if title:
                    changes["title"] = title
            elif key == "description":
                changes["description"] = str(value or "").strip()
            elif key == "importance":
                if value is not None:
                    changes["importance"] = clamp_importance(value)
            else:
                changes["deadline"] = _parse(value)

        updated = replace(task, **changes)
        if updated == task:
            return Transition(task_id, TransitionOutcome.UNCHANGED, task, task)
        return self._store(task, updated)

    def delete(self, task_id: str) -> Transition:
        task = self._tasks.pop(task_id, None)
        if task is None:
            return Transition(task_id, TransitionOutcome.UNKNOWN_TASK)
        logger.debug("task %s deleted", task_id)
        return Transition(task_id, TransitionOutcome.OK, task, None)

    def begin_work(self, task_id: str) -> Transition:
        task = self._tasks.get(task_id)
        if task is None:
            return Transition(task_id, TransitionOutcome.UNKNOWN_TASK)
        if task.status.terminal:
            return Transition(task_id, TransitionOutcome.ILLEGAL, task, task)
        if task.status == TaskStatus.IN_PROGRESS:
            return Transition(task_id, TransitionOutcome.UNCHANGED, task, task)
        return self._store(task, replace(task, status=TaskStatus.IN_PROGRESS))

    def complete(self, task_id: str, now: datetime) -> Transition:
        task = self._tasks.get(task_id)
        if task is None:
            return Transition(task_id, TransitionOutcome.UNKNOWN_TASK)
        if task.status == TaskStatus.COMPLETED:
            return Transition(task_id, TransitionOutcome.UNCHANGED, task, task)
        if task.status.terminal:
            return Transition(task_id, TransitionOutcome.ILLEGAL, task, task)
        return self._store(task, replace(task, status=TaskStatus.COMPLETED, completed_at=now))

    def procrastinate(self, task_id: str) -> Transition:
        task = self._tasks.get(task_id)
        if task is None:
            return Transition(task_id, TransitionOutcome.UNKNOWN_TASK)
        if task.status.terminal:
            return Transition(task_id, TransitionOutcome.ILLEGAL, task, task)

        level = task.procrastination_level + self.procrastination_step
        if level >= PROCRASTINATION_MAX:
            updated = replace(
                task,
                procrastination_level=PROCRASTINATION_MAX,
                status=TaskStatus.RUNNING_AWAY,
            )
        else:
            updated = replace(task, procrastination_level=level)
        return self._store(task, updated)

    def record_work(self, task_id: str, seconds: float, at: datetime) -> Transition:
        task = self._tasks.get(task_id)
        if task is None:
            return Transition(task_id, TransitionOutcome.UNKNOWN_TASK)
        updated = replace(
            task,
            time_spent=task.time_spent + max(0.0, seconds),
            last_worked_on=at,
        )
        return self._store(task, updated)

    def _store(self, before: Task, after: Task) -> Transition:
        self._tasks[after.id] = after
        if before.status != after.status:
            logger.debug("task %s %s -> %s", after.id, before.status.value, after.status.value)
        return Transition(after.id, TransitionOutcome.OK, before, after)

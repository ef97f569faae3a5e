from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Any, Callable, Iterable, Mapping, Sequence

from .ledger import FocusSession
from .tasks import ensure_aware

logger = logging.getLogger(__name__)

FIVE_TASKS = 5
TIME_BENDER_MIN_DISTORTION = 75.0
TIME_BENDER_MIN_DURATION_SEC = 4 * 60 * 60
DEADLINE_WINDOW_SEC = 10 * 60
DEADLINE_WARRIOR_COUNT = 3


class AchievementRule(str, Enum):
    FIRST_TASK = "first-task"
    FIVE_TASKS_COMPLETED = "five-tasks-completed"
    PROCRASTINATION_MASTER = "procrastination-master"
    TIME_BENDER = "time-bender"
    DEADLINE_WARRIOR = "deadline-warrior"


CATALOG: dict[AchievementRule, tuple[str, str]] = {
    AchievementRule.FIRST_TASK: (
        "Baby Steps",
        "Created your first task. Congratulations on the bare minimum!",
    ),
    AchievementRule.FIVE_TASKS_COMPLETED: (
        "Productivity Padawan",
        "Completed 5 tasks. The force of productivity is starting to flow through you.",
    ),
    AchievementRule.PROCRASTINATION_MASTER: (
        "Procrastination Grand Master",
        "Avoided a task for so long it achieved sentience and ran away.",
    ),
    AchievementRule.TIME_BENDER: (
        "Time Lord",
        "Spent over 4 hours in the time distortion zone without going insane.",
    ),
    AchievementRule.DEADLINE_WARRIOR: (
        "Deadline Warrior",
        "Completed 3 tasks within 10 minutes of their deadlines.",
    ),
}


@dataclass(frozen=True)
class Achievement:
    id: AchievementRule
    title: str
    description: str
    is_unlocked: bool = False
    unlocked_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id.value,
            "title": self.title,
            "description": self.description,
            "is_unlocked": self.is_unlocked,
            "unlocked_at": self.unlocked_at.isoformat() if self.unlocked_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Achievement:
        rule = AchievementRule(str(data["id"]))
        title, description = CATALOG[rule]
        unlocked_raw = data.get("unlocked_at")
        unlocked_at = ensure_aware(datetime.fromisoformat(str(unlocked_raw))) if unlocked_raw else None
        return cls(
            id=rule,
            title=title,
            description=description,
            is_unlocked=bool(data.get("is_unlocked", False)) or unlocked_at is not None,
            unlocked_at=unlocked_at,
        )


@dataclass(frozen=True)
class AggregateView:
    """Everything the rules are allowed to look at."""

    tasks_created_count: int
    total_tasks_completed: int
    tasks_fled_count: int
    deadline_finishes: int
    sessions: Sequence[FocusSession] = ()


def finished_near_deadline(
    completed_at: datetime | None,
    deadline: datetime | None,
    window_sec: float = DEADLINE_WINDOW_SEC,
) -> bool:
    if completed_at is None or deadline is None:
        return False
    return deadline - timedelta(seconds=window_sec) <= completed_at <= deadline


def _is_time_bender(session: FocusSession) -> bool:
    return (
        session.closed
        and session.distortion_level > TIME_BENDER_MIN_DISTORTION
        and session.duration > TIME_BENDER_MIN_DURATION_SEC
    )


RULES: dict[AchievementRule, Callable[[AggregateView], bool]] = {
    AchievementRule.FIRST_TASK: lambda view: view.tasks_created_count >= 1,
    AchievementRule.FIVE_TASKS_COMPLETED: lambda view: view.total_tasks_completed >= FIVE_TASKS,
    AchievementRule.PROCRASTINATION_MASTER: lambda view: view.tasks_fled_count >= 1,
    AchievementRule.TIME_BENDER: lambda view: any(_is_time_bender(s) for s in view.sessions),
    AchievementRule.DEADLINE_WARRIOR: lambda view: view.deadline_finishes >= DEADLINE_WARRIOR_COUNT,
}


class AchievementEvaluator:
    def evaluate(self, view: AggregateView) -> list[AchievementRule]:
        return [rule for rule in AchievementRule if RULES[rule](view)]


class AchievementBook:
    def __init__(self) -> None:
        self._items: dict[AchievementRule, Achievement] = {
            rule: Achievement(id=rule, title=title, description=description)
            for rule, (title, description) in CATALOG.items()
        }

    def get(self, rule: AchievementRule) -> Achievement:
        return self._items[rule]

    def all(self) -> list[Achievement]:
        return [self._items[rule] for rule in AchievementRule]

    def unlocked(self) -> list[Achievement]:
        return [item for item in self.all() if item.is_unlocked]

    def load(self, items: Iterable[Achievement]) -> None:
        for item in items:
            self._items[item.id] = item

    def unlock(self, rule: AchievementRule, at: datetime) -> Achievement | None:
        """Unlock once. Returns None when the achievement was already unlocked."""
        current = self._items[rule]
        if current.is_unlocked:
            return None
        unlocked = replace(current, is_unlocked=True, unlocked_at=at)
        self._items[rule] = unlocked
        logger.info("achievement unlocked: %s", rule.value)
        return unlocked

    def apply(self, rules: Iterable[AchievementRule], at: datetime) -> list[Achievement]:
        fresh: list[Achievement] = []
        for rule in rules:
            item = self.unlock(rule, at)
            if item is not None:
                fresh.append(item)
        return fresh

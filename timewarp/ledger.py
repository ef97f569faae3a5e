from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
import logging
from typing import Any, Iterable, Mapping
import uuid

from .distortion import clamp_distortion
from .tasks import ensure_aware

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FocusSession:
    id: str
    task_id: str
    start_time: datetime
    end_time: datetime | None = None
    duration: float = 0.0
    distortion_level: float = 0.0

    @property
    def closed(self) -> bool:
        return self.end_time is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "distortion_level": self.distortion_level,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FocusSession:
        end_raw = data.get("end_time")
        return cls(
            id=str(data["id"]),
            task_id=str(data["task_id"]),
            start_time=ensure_aware(datetime.fromisoformat(str(data["start_time"]))),
            end_time=ensure_aware(datetime.fromisoformat(str(end_raw))) if end_raw else None,
            duration=max(0.0, float(data.get("duration", 0.0))),
            distortion_level=clamp_distortion(data.get("distortion_level", 0.0)),
        )


@dataclass(frozen=True)
class ProductivityStats:
    total_tasks_completed: int = 0
    total_time_spent: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    last_active_day: date | None = None
    tasks_created_count: int = 0
    tasks_fled_count: int = 0
    deadline_finishes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tasks_completed": self.total_tasks_completed,
            "total_time_spent": self.total_time_spent,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_active_day": self.last_active_day.isoformat() if self.last_active_day else None,
            "tasks_created_count": self.tasks_created_count,
            "tasks_fled_count": self.tasks_fled_count,
            "deadline_finishes": self.deadline_finishes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProductivityStats:
        day_raw = data.get("last_active_day")
        return cls(
            total_tasks_completed=max(0, int(data.get("total_tasks_completed", 0))),
            total_time_spent=max(0.0, float(data.get("total_time_spent", 0.0))),
            current_streak=max(0, int(data.get("current_streak", 0))),
            longest_streak=max(0, int(data.get("longest_streak", 0))),
            last_active_day=date.fromisoformat(str(day_raw)) if day_raw else None,
            tasks_created_count=max(0, int(data.get("tasks_created_count", 0))),
            tasks_fled_count=max(0, int(data.get("tasks_fled_count", 0))),
            deadline_finishes=max(0, int(data.get("deadline_finishes", 0))),
        )


def advance_streak(stats: ProductivityStats, day: date) -> ProductivityStats:
    last = stats.last_active_day
    if last is not None and day <= last:
        # same day, or a clock that stepped backwards
        current = max(1, stats.current_streak)
        return replace(stats, current_streak=current, longest_streak=max(stats.longest_streak, current))
    if last is not None and last + timedelta(days=1) == day:
        current = stats.current_streak + 1
    else:
        current = 1
    return replace(
        stats,
        current_streak=current,
        longest_streak=max(stats.longest_streak, current),
        last_active_day=day,
    )


class FocusSessionLedger:
    """Open/close bookkeeping for focus sessions, billed in real seconds."""

    def __init__(self) -> None:
        self._active: FocusSession | None = None
        self._history: list[FocusSession] = []
        self.stats = ProductivityStats()

    @property
    def active(self) -> FocusSession | None:
        return self._active

    def sessions(self) -> list[FocusSession]:
        return list(self._history)

    def sessions_for(self, task_id: str) -> list[FocusSession]:
        return [item for item in self._history if item.task_id == task_id]

    def load(self, sessions: Iterable[FocusSession], stats: ProductivityStats) -> None:
        self._active = None
        self._history = [item for item in sessions if item.closed]
        self.stats = stats

    def bump(self, **counters: int) -> ProductivityStats:
        values = {key: getattr(self.stats, key) + amount for key, amount in counters.items()}
        self.stats = replace(self.stats, **values)
        return self.stats

    def start_session(self, task_id: str, now: datetime) -> FocusSession | None:
        if self._active is not None:
            return None
        self._active = FocusSession(id=uuid.uuid4().hex, task_id=task_id, start_time=now)
        logger.debug("session %s opened for task %s", self._active.id, task_id)
        return self._active

    def end_session(self, now: datetime, distortion_level: float = 0.0) -> FocusSession | None:
        """Close the active session; ``distortion_level`` is the clock's level at close."""
        session = self._active
        if session is None:
            return None
        duration = max(0.0, (now - session.start_time).total_seconds())
        closed = replace(
            session,
            end_time=now,
            duration=duration,
            distortion_level=clamp_distortion(distortion_level),
        )
        self._history.append(closed)
        self._active = None

        self.stats = advance_streak(
            replace(self.stats, total_time_spent=self.stats.total_time_spent + duration),
            now.date(),
        )
        logger.debug("session %s closed after %.1fs", closed.id, duration)
        return closed

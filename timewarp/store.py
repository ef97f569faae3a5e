from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
import logging
from threading import RLock
from typing import Any, Callable, Iterator, Mapping

from .achievements import (
    DEADLINE_WINDOW_SEC,
    Achievement,
    AchievementBook,
    AchievementEvaluator,
    AggregateView,
    finished_near_deadline,
)
from .clock import Clock, RealClock
from .distortion import (
    DEFAULT_DURATION_SEC,
    DISTORTION_STEP,
    ClockSnapshot,
    ClockState,
    DistortionClock,
)
from .ledger import FocusSession, FocusSessionLedger, ProductivityStats
from .tasks import (
    DEFAULT_IMPORTANCE,
    PROCRASTINATION_STEP,
    Task,
    TaskLifecycleAutomaton,
    TaskStatus,
    Transition,
)

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict[str, Any]], None]
CompletionCallback = Callable[[], None]

PERSISTED_KEYS = ("tasks", "focus_sessions", "productivity_stats", "achievements")


@dataclass(frozen=True)
class StoreConfig:
    duration_sec: float = DEFAULT_DURATION_SEC
    procrastination_step: int = PROCRASTINATION_STEP
    deadline_window_sec: float = DEADLINE_WINDOW_SEC


@dataclass(frozen=True)
class StoreSnapshot:
    tasks: tuple[Task, ...]
    focus_sessions: tuple[FocusSession, ...]
    active_session: FocusSession | None
    productivity_stats: ProductivityStats
    achievements: tuple[Achievement, ...]
    clock: ClockSnapshot


class TimewarpStore:
    """Single-writer container for tasks, focus sessions, stats and achievements.

    Every public method holds one re-entrant lock for its whole body, so
    operations never interleave. Rejected operations return a falsy result
    (or a Transition whose ``changed`` is False) instead of raising.

    Subscribers receive ``(event, payload)`` after each mutation, while the
    lock is still held.
    """

    def __init__(self, clock: Clock | None = None, config: StoreConfig | None = None) -> None:
        self.clock = clock or RealClock()
        self.config = config or StoreConfig()
        self._lock = RLock()
        self._tasks = TaskLifecycleAutomaton(self.config.procrastination_step)
        self._ledger = FocusSessionLedger()
        self._book = AchievementBook()
        self._evaluator = AchievementEvaluator()
        self._timer = DistortionClock(self.config.duration_sec)
        self._timer.add_completion_listener(self._on_countdown_complete)
        self._subscribers: list[Listener] = []
        self._completion_callbacks: list[CompletionCallback] = []

    # -- subscriptions -------------------------------------------------

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._subscribers.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            self._subscribers = [item for item in self._subscribers if item is not listener]

    def on_complete(self, callback: CompletionCallback) -> None:
        with self._lock:
            self._completion_callbacks.append(callback)

    @contextmanager
    def held(self) -> Iterator[None]:
        """Keep other callers out across several calls, e.g. a mutation and its save."""
        with self._lock:
            yield

    # -- read access ---------------------------------------------------

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            return self._tasks.get(task_id)

    def tasks(self, status: TaskStatus | None = None) -> list[Task]:
        with self._lock:
            items = self._tasks.tasks()
        if status is None:
            return items
        return [item for item in items if item.status == status]

    def sessions(self) -> list[FocusSession]:
        with self._lock:
            return self._ledger.sessions()

    @property
    def active_session(self) -> FocusSession | None:
        with self._lock:
            return self._ledger.active

    @property
    def stats(self) -> ProductivityStats:
        with self._lock:
            return self._ledger.stats

    def achievements(self) -> list[Achievement]:
        with self._lock:
            return self._book.all()

    @property
    def timer_state(self) -> ClockState:
        with self._lock:
            return self._timer.state

    def timer(self) -> ClockSnapshot:
        with self._lock:
            return self._timer.snapshot()

    def snapshot(self) -> StoreSnapshot:
        with self._lock:
            return StoreSnapshot(
                tasks=tuple(self._tasks.tasks()),
                focus_sessions=tuple(self._ledger.sessions()),
                active_session=self._ledger.active,
                productivity_stats=self._ledger.stats,
                achievements=tuple(self._book.all()),
                clock=self._timer.snapshot(),
            )

    # -- tasks ---------------------------------------------------------

    def add_task(
        self,
        title: str,
        description: str = "",
        importance: int = DEFAULT_IMPORTANCE,
        deadline: datetime | None = None,
    ) -> Task:
        with self._lock:
            task = self._tasks.create(
                title,
                now=self.clock.now(),
                description=description,
                importance=importance,
                deadline=deadline,
            )
            self._ledger.bump(tasks_created_count=1)
            self._emit("task_added", task=task.to_dict())
            self._evaluate()
            return task

    def update_task(self, task_id: str, patch: Mapping[str, Any]) -> Transition:
        with self._lock:
            result = self._tasks.update(task_id, patch)
            self._after_transition("task_updated", result)
            return result

    def delete_task(self, task_id: str) -> Transition:
        with self._lock:
            result = self._tasks.delete(task_id)
            if result.changed:
                self._emit("task_deleted", task_id=task_id)
                self._evaluate()
            return result

    def complete_task(self, task_id: str) -> Transition:
        with self._lock:
            result = self._tasks.complete(task_id, now=self.clock.now())
            if result.changed and result.after is not None:
                counters = {"total_tasks_completed": 1}
                if finished_near_deadline(
                    result.after.completed_at,
                    result.after.deadline,
                    self.config.deadline_window_sec,
                ):
                    counters["deadline_finishes"] = 1
                self._ledger.bump(**counters)
            self._after_transition("task_completed", result)
            return result

    def procrastinate(self, task_id: str) -> Transition:
        with self._lock:
            result = self._tasks.procrastinate(task_id)
            if result.entered == TaskStatus.RUNNING_AWAY:
                self._ledger.bump(tasks_fled_count=1)
                self._after_transition("task_fled", result)
            else:
                self._after_transition("task_procrastinated", result)
            return result

    # -- focus sessions ------------------------------------------------

    def start_focus_session(self, task_id: str) -> FocusSession | None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status.terminal:
                logger.debug("focus session refused for task %s", task_id)
                return None
            session = self._ledger.start_session(task_id, now=self.clock.now())
            if session is None:
                logger.debug("focus session refused: %s already active", self._ledger.active)
                return None
            self._tasks.begin_work(task_id)
            self._emit("session_started", session=session.to_dict())
            return session

    def end_focus_session(self) -> FocusSession | None:
        with self._lock:
            now = self.clock.now()
            closed = self._ledger.end_session(now, distortion_level=self._timer.distortion_level)
            if closed is None:
                return None
            self._tasks.record_work(closed.task_id, closed.duration, at=now)
            self._emit("session_ended", session=closed.to_dict())
            self._evaluate()
            return closed

    def set_distortion_level(self, level: float) -> bool:
        with self._lock:
            if not self._timer.set_distortion(level):
                return False
            self._emit("distortion", level=self._timer.distortion_level, multiplier=self._timer.current_multiplier())
            return True

    def nudge_distortion(self, delta: float = DISTORTION_STEP) -> bool:
        with self._lock:
            return self.set_distortion_level(self._timer.distortion_level + delta)

    # -- timer controls ------------------------------------------------

    def start_timer(self, duration: float | None = None, task_id: str | None = None) -> bool:
        """Start the countdown, opening a focus session on ``task_id`` when given.

        Nothing starts when the task cannot take a session.
        """
        with self._lock:
            if self._timer.state != ClockState.IDLE:
                return False
            if task_id is not None:
                task = self._tasks.get(task_id)
                if task is None or task.status.terminal or self._ledger.active is not None:
                    logger.debug("timer start refused for task %s", task_id)
                    return False
            self._timer.start(duration)
            self._emit_timer()
            if task_id is not None:
                self.start_focus_session(task_id)
            return True

    def pause_timer(self) -> bool:
        with self._lock:
            return self._timer_control(self._timer.pause())

    def resume_timer(self) -> bool:
        with self._lock:
            return self._timer_control(self._timer.resume())

    def enter_distortion(self) -> bool:
        with self._lock:
            return self._timer_control(self._timer.enter_distortion())

    def exit_distortion(self) -> bool:
        with self._lock:
            return self._timer_control(self._timer.exit_distortion())

    def reset_timer(self, duration: float | None = None) -> bool:
        """Return the countdown to Idle and close any open focus session."""
        with self._lock:
            # reset zeroes the level the session closes with
            self.end_focus_session()
            self._timer.reset(duration)
            self._emit_timer()
            return True

    def tick(self, dt_real: float) -> bool:
        with self._lock:
            changed = self._timer.tick(dt_real)
            if changed and self._timer.state != ClockState.COMPLETED:
                self._emit(
                    "tick",
                    remaining=self._timer.remaining,
                    multiplier=self._timer.current_multiplier(),
                )
            return changed

    # -- persistence layout --------------------------------------------

    def export_state(self) -> dict[str, Any]:
        with self._lock:
            return {
                "tasks": [item.to_dict() for item in self._tasks.tasks()],
                "focus_sessions": [item.to_dict() for item in self._ledger.sessions()],
                "productivity_stats": self._ledger.stats.to_dict(),
                "achievements": [item.to_dict() for item in self._book.all()],
            }

    def load_state(self, state: Mapping[str, Any]) -> None:
        """Replace persisted state. The clock and active session restart from Idle."""
        try:
            tasks = [Task.from_dict(item) for item in state.get("tasks", [])]
            sessions = [FocusSession.from_dict(item) for item in state.get("focus_sessions", [])]
            stats = ProductivityStats.from_dict(state.get("productivity_stats") or {})
            achievements = [Achievement.from_dict(item) for item in state.get("achievements", [])]
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"malformed timewarp state: {exc}") from exc

        with self._lock:
            self._tasks.load(tasks)
            self._ledger.load(sessions, stats)
            self._book = AchievementBook()
            self._book.load(achievements)
            self._timer.reset(self.config.duration_sec)
            self._emit("state_loaded", tasks=len(tasks), sessions=len(sessions))

    # -- internals -----------------------------------------------------

    def _timer_control(self, accepted: bool) -> bool:
        if accepted:
            self._emit_timer()
        return accepted

    def _emit_timer(self) -> None:
        snap = self._timer.snapshot()
        self._emit(
            "timer",
            state=snap.state.value,
            focus_state=snap.focus_state.value,
            remaining=snap.remaining,
            distortion_level=snap.distortion_level,
        )

    def _on_countdown_complete(self) -> None:
        self._emit("timer_completed", duration=self._timer.duration)
        self.end_focus_session()
        for callback in list(self._completion_callbacks):
            callback()

    def _after_transition(self, event: str, result: Transition) -> None:
        if not result.changed:
            logger.debug("%s rejected for %s: %s", event, result.task_id, result.outcome.value)
            return
        payload = result.after.to_dict() if result.after is not None else {"id": result.task_id}
        self._emit(event, task=payload)
        self._evaluate()

    def _evaluate(self) -> None:
        stats = self._ledger.stats
        view = AggregateView(
            tasks_created_count=stats.tasks_created_count,
            total_tasks_completed=stats.total_tasks_completed,
            tasks_fled_count=stats.tasks_fled_count,
            deadline_finishes=stats.deadline_finishes,
            sessions=self._ledger.sessions(),
        )
        rules = self._evaluator.evaluate(view)
        for item in self._book.apply(rules, at=self.clock.now()):
            self._emit("achievement_unlocked", achievement=item.to_dict())

    def _emit(self, event: str, **payload: Any) -> None:
        for listener in list(self._subscribers):
            try:
                listener(event, payload)
            except Exception:
                logger.exception("subscriber failed while handling %s", event)

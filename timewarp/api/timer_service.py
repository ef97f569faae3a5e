from __future__ import annotations

from pathlib import Path
import logging
import queue
from threading import Lock
from typing import Any, Callable, TypeVar

from ..clock import Clock, RealClock
from ..db import TimewarpDB, default_db_path
from ..distortion import ClockState
from ..store import TimewarpStore
from ..ticker import DEFAULT_TICK_SECONDS, TickScheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TICKING = (ClockState.RUNNING, ClockState.DISTORTED, ClockState.PAUSED)


class TimerService:
    """One store, one tick source and one DB, shared by every request of an app."""

    def __init__(
        self,
        db_path: Path | None = None,
        clock: Clock | None = None,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
    ) -> None:
        self._lock = Lock()
        self.clock = clock or RealClock()
        self.db = TimewarpDB(Path(db_path or default_db_path()))
        self.store = TimewarpStore(clock=self.clock)
        self.store.load_state(self.db.load_state())
        self.tick_seconds = tick_seconds
        self._scheduler: TickScheduler | None = None
        self._subscribers: list[queue.Queue[dict[str, Any]]] = []
        self.store.subscribe(self._on_event)
        self.store.on_complete(self._on_complete)

    @property
    def db_path(self) -> Path:
        return self.db.db_path

    def mutate(self, operation: Callable[[TimewarpStore], T]) -> T:
        """Apply an operation, then persist and keep the tick source in step with the clock.

        The operation and its save share the store lock, so a completion saved
        from the ticker thread is never overwritten by an older export.
        """
        with self.store.held():
            result = operation(self.store)
            self._save()
        # stop() waits for an in-flight tick, which needs the store lock
        self._sync_scheduler()
        return result

    def shutdown(self) -> None:
        with self._lock:
            scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            scheduler.stop()
        with self.store.held():
            self._save()

    def _save(self) -> None:
        self.db.save_state(self.store.export_state())

    def subscribe(self) -> queue.Queue[dict[str, Any]]:
        q: queue.Queue[dict[str, Any]] = queue.Queue(maxsize=200)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue[dict[str, Any]]) -> None:
        with self._lock:
            self._subscribers = [item for item in self._subscribers if item is not q]

    def _sync_scheduler(self) -> None:
        state = self.store.timer_state
        with self._lock:
            scheduler = self._scheduler
            if state in _TICKING and (scheduler is None or not scheduler.running):
                self._scheduler = TickScheduler(self.store, self.clock, self.tick_seconds)
                self._scheduler.start()
                return
            if state not in _TICKING:
                self._scheduler = None
        if state not in _TICKING and scheduler is not None:
            scheduler.stop()

    def _on_complete(self) -> None:
        # runs on the ticker thread with the store lock held; the loop exits on its own once Completed
        self._save()

    def _on_event(self, event: str, payload: dict[str, Any]) -> None:
        self._broadcast({"event": event, **payload})

    def _broadcast(self, event: dict[str, Any]) -> None:
        with self._lock:
            alive: list[queue.Queue[dict[str, Any]]] = []
            for q in self._subscribers:
                try:
                    q.put_nowait(event)
                    alive.append(q)
                except queue.Full:
                    logger.debug("dropping slow timer stream subscriber")
                    continue
            self._subscribers = alive

from __future__ import annotations

from dataclasses import dataclass
import logging
from threading import Event, RLock, Thread, current_thread

from .clock import Clock
from .distortion import DEFAULT_DURATION_SEC, ClockState
from .store import TimewarpStore

logger = logging.getLogger(__name__)

DEFAULT_TICK_SECONDS = 0.05

_LIVE = (ClockState.RUNNING, ClockState.DISTORTED, ClockState.PAUSED)


@dataclass(frozen=True)
class TimerConfig:
    task_id: str | None = None
    duration_sec: float = DEFAULT_DURATION_SEC
    tick_seconds: float = DEFAULT_TICK_SECONDS
    distortion: float | None = None


class TickScheduler:
    """Recurring tick source for a store's countdown.

    Each tick passes the monotonic time elapsed since the previous tick, so
    the countdown does not depend on how often the loop wakes up. Once
    ``stop()`` returns no further tick reaches the store.
    """

    def __init__(self, store: TimewarpStore, clock: Clock, tick_seconds: float = DEFAULT_TICK_SECONDS) -> None:
        self.store = store
        self.clock = clock
        self.tick_seconds = max(0.001, float(tick_seconds))
        self._cancel = Event()
        self._gate = RLock()
        self._thread: Thread | None = None
        self._last: float | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def start(self) -> bool:
        if self.running:
            return False
        self._cancel = Event()
        self._last = self.clock.monotonic()
        self._thread = Thread(target=self._loop, name="timewarp-ticker", daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout: float = 2.0) -> None:
        self._cancel.set()
        # wait out a tick that is already inside the store
        with self._gate:
            pass
        thread = self._thread
        if thread is not None and thread is not current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    def run_until_idle(self, max_ticks: int | None = None) -> int:
        """Drive ticks on the calling thread until the countdown leaves its live states."""
        self._cancel = Event()
        self._last = self.clock.monotonic()
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            self.clock.sleep(self.tick_seconds)
            if not self._step():
                break
            ticks += 1
        return ticks

    def _loop(self) -> None:
        while not self._cancel.wait(self.tick_seconds):
            if not self._step():
                break
        logger.debug("ticker loop exited")

    def _step(self) -> bool:
        with self._gate:
            if self._cancel.is_set():
                return False
            now = self.clock.monotonic()
            last = self._last if self._last is not None else now
            self._last = now
            self.store.tick(now - last)
            return self.store.timer_state in _LIVE

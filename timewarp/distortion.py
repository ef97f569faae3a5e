from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_DURATION_SEC = 25 * 60
DISTORTION_MIN = 0.0
DISTORTION_MAX = 100.0
DISTORTION_STEP = 10.0
REVERSE_THRESHOLD = 95.0


class ClockState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    DISTORTED = "distorted"
    COMPLETED = "completed"


class FocusState(str, Enum):
    IDLE = "idle"
    FOCUS = "focus"
    BREAK = "break"
    DISTORTED = "distorted"


_TICKING = (ClockState.RUNNING, ClockState.DISTORTED)

CompletionListener = Callable[[], None]


def clamp_distortion(level: float) -> float:
    return min(DISTORTION_MAX, max(DISTORTION_MIN, float(level)))


def multiplier(level: float) -> float:
    """Virtual seconds consumed per real second at the given distortion level.

    The curve is continuous from 0 to 95: 0.5x at 0, 1x at 30, 2x at 60,
    3x at 80, approaching 5x just below 95. From 95 upward time runs
    backward at the real rate.
    """
    d = clamp_distortion(level)
    if d < 30:
        return 0.5 + d / 60
    if d < 60:
        return 1 + (d - 30) / 30
    if d < 80:
        return 2 + (d - 60) / 20
    if d < REVERSE_THRESHOLD:
        return 3 + (d - 80) / 7.5
    return -1.0


def format_countdown(seconds: float) -> str:
    total = max(0, int(seconds + 0.999))
    minutes, sec = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{sec:02d}"
    return f"{minutes:02d}:{sec:02d}"


@dataclass(frozen=True)
class ClockSnapshot:
    state: ClockState
    focus_state: FocusState
    duration: float
    remaining: float
    distortion_level: float
    multiplier: float


class DistortionClock:
    """Countdown whose rate depends on the distortion level.

    Every control returns True when it changed the clock and False when the
    call was not legal in the current state. Illegal calls never raise.
    """

    def __init__(
        self,
        duration: float = DEFAULT_DURATION_SEC,
        on_complete: CompletionListener | None = None,
    ) -> None:
        self._duration = max(0.0, float(duration))
        self._remaining = self._duration
        self._level = 0.0
        self._state = ClockState.IDLE
        self._listeners: list[CompletionListener] = []
        if on_complete is not None:
            self._listeners.append(on_complete)

    @property
    def state(self) -> ClockState:
        return self._state

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def remaining(self) -> float:
        return self._remaining

    @property
    def distortion_level(self) -> float:
        return self._level

    @property
    def elapsed_virtual(self) -> float:
        return self._duration - self._remaining

    @property
    def progress(self) -> float:
        if self._duration <= 0:
            return 1.0 if self._state == ClockState.COMPLETED else 0.0
        return self.elapsed_virtual / self._duration

    @property
    def focus_state(self) -> FocusState:
        if self._state == ClockState.RUNNING:
            return FocusState.FOCUS
        if self._state == ClockState.DISTORTED:
            return FocusState.DISTORTED
        if self._state == ClockState.COMPLETED:
            return FocusState.BREAK
        return FocusState.IDLE

    def current_multiplier(self) -> float:
        if self._state == ClockState.DISTORTED:
            return multiplier(self._level)
        return 1.0

    def add_completion_listener(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    def start(self, duration: float | None = None) -> bool:
        if self._state != ClockState.IDLE:
            return False
        if duration is not None:
            self._duration = max(0.0, float(duration))
        self._remaining = self._duration
        self._move(ClockState.RUNNING)
        return True

    def pause(self) -> bool:
        if self._state not in _TICKING:
            return False
        self._move(ClockState.PAUSED)
        return True

    def resume(self) -> bool:
        if self._state != ClockState.PAUSED:
            return False
        self._move(ClockState.RUNNING)
        return True

    def reset(self, duration: float | None = None) -> bool:
        if duration is not None:
            self._duration = max(0.0, float(duration))
        self._remaining = self._duration
        self._level = 0.0
        self._move(ClockState.IDLE)
        return True

    def enter_distortion(self) -> bool:
        if self._state != ClockState.RUNNING:
            return False
        self._move(ClockState.DISTORTED)
        return True

    def exit_distortion(self) -> bool:
        if self._state != ClockState.DISTORTED:
            return False
        self._move(ClockState.RUNNING)
        return True

    def set_distortion(self, level: float) -> bool:
        if self._state != ClockState.DISTORTED:
            return False
        self._level = clamp_distortion(level)
        return True

    def nudge_distortion(self, delta: float = DISTORTION_STEP) -> bool:
        return self.set_distortion(self._level + delta)

    def tick(self, dt_real: float) -> bool:
        """Consume a real-time delta measured by the caller.

        Returns True when remaining time or state changed.
        """
        if self._state not in _TICKING or dt_real <= 0:
            return False

        rate = self.current_multiplier()
        remaining = self._remaining - dt_real * rate
        self._remaining = min(self._duration, max(0.0, remaining))

        if rate >= 0 and self._remaining <= 0:
            self._remaining = 0.0
            self._move(ClockState.COMPLETED)
            self._fire_completion()
        return True

    def snapshot(self) -> ClockSnapshot:
        return ClockSnapshot(
            state=self._state,
            focus_state=self.focus_state,
            duration=self._duration,
            remaining=self._remaining,
            distortion_level=self._level,
            multiplier=self.current_multiplier(),
        )

    def _move(self, target: ClockState) -> None:
        logger.debug("clock %s -> %s (remaining=%.3f)", self._state.value, target.value, self._remaining)
        self._state = target

    def _fire_completion(self) -> None:
        logger.info("countdown completed after %.1f virtual seconds", self._duration)
        for listener in list(self._listeners):
            listener()

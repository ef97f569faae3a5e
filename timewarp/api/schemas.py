from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from ..distortion import DISTORTION_STEP

TaskStatusValue = Literal["pending", "in-progress", "completed", "running-away"]


class HealthOut(BaseModel):
    status: str = Field(default="ok")


class MetaOut(BaseModel):
    app: str
    version: str
    db_path: str
    platform: str


class TaskOut(BaseModel):
    id: str
    title: str
    description: str
    status: TaskStatusValue
    importance: int
    created_at: datetime
    deadline: datetime | None = None
    procrastination_level: int
    time_spent: float
    completed_at: datetime | None = None
    last_worked_on: datetime | None = None


class TaskCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    importance: int = 3
    deadline: datetime | None = None


class TaskPatchRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    importance: int | None = None
    deadline: datetime | None = None


class SessionOut(BaseModel):
    id: str
    task_id: str
    start_time: datetime
    end_time: datetime | None = None
    duration: float
    distortion_level: float


class FocusStartRequest(BaseModel):
    task_id: str


class TimerStartRequest(BaseModel):
    duration_sec: float = Field(default=25 * 60, gt=0)
    task_id: str | None = None


class TimerResetRequest(BaseModel):
    duration_sec: float | None = Field(default=None, gt=0)


class DistortionRequest(BaseModel):
    level: float


class DistortionNudgeRequest(BaseModel):
    delta: float = DISTORTION_STEP


class TimerOut(BaseModel):
    state: str
    focus_state: str
    duration: float
    remaining: float
    distortion_level: float
    multiplier: float
    active_session: SessionOut | None = None


class StatsOut(BaseModel):
    total_tasks_completed: int
    total_time_spent: float
    current_streak: int
    longest_streak: int
    last_active_day: date | None = None
    completion_rate: float
    average_session_sec: float
    fled_tasks: int


class AchievementOut(BaseModel):
    id: str
    title: str
    description: str
    is_unlocked: bool
    unlocked_at: datetime | None = None

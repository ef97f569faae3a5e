from __future__ import annotations

from fastapi import APIRouter, Depends

from ...reporting import build_summary
from ..deps import get_service
from ..schemas import AchievementOut, StatsOut
from ..timer_service import TimerService

router = APIRouter(prefix="/api/v1", tags=["stats"])


@router.get("/stats", response_model=StatsOut)
def get_stats(service: TimerService = Depends(get_service)) -> StatsOut:
    snapshot = service.store.snapshot()
    summary = build_summary(snapshot)
    stats = snapshot.productivity_stats
    return StatsOut(
        total_tasks_completed=stats.total_tasks_completed,
        total_time_spent=stats.total_time_spent,
        current_streak=stats.current_streak,
        longest_streak=stats.longest_streak,
        last_active_day=stats.last_active_day,
        completion_rate=summary.completion_rate,
        average_session_sec=summary.average_session_sec,
        fled_tasks=summary.fled_tasks,
    )


@router.get("/achievements", response_model=list[AchievementOut])
def list_achievements(service: TimerService = Depends(get_service)) -> list[AchievementOut]:
    return [AchievementOut(**item.to_dict()) for item in service.store.achievements()]

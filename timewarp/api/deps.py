from __future__ import annotations

from fastapi import Request

from .timer_service import TimerService


def get_service(request: Request) -> TimerService:
    return request.app.state.timer_service

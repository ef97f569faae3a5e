from __future__ import annotations

import json
import queue
from typing import Callable, Iterator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ...distortion import DISTORTION_STEP
from ...store import TimewarpStore
from ..deps import get_service
from ..schemas import (
    DistortionNudgeRequest,
    DistortionRequest,
    SessionOut,
    TimerOut,
    TimerResetRequest,
    TimerStartRequest,
)
from ..timer_service import TimerService

router = APIRouter(prefix="/api/v1", tags=["timer"])


def timer_out(store: TimewarpStore) -> TimerOut:
    snap = store.timer()
    session = store.active_session
    return TimerOut(
        state=snap.state.value,
        focus_state=snap.focus_state.value,
        duration=snap.duration,
        remaining=snap.remaining,
        distortion_level=snap.distortion_level,
        multiplier=snap.multiplier,
        active_session=SessionOut(**session.to_dict()) if session else None,
    )


def _control(service: TimerService, action: Callable[[TimewarpStore], bool]) -> TimerOut:
    if not service.mutate(action):
        raise HTTPException(
            status_code=409,
            detail=f"not allowed while timer is {service.store.timer_state.value}",
        )
    return timer_out(service.store)


@router.get("/timer/state", response_model=TimerOut)
def timer_state(service: TimerService = Depends(get_service)) -> TimerOut:
    return timer_out(service.store)


@router.post("/timer/start", response_model=TimerOut)
def start_timer(payload: TimerStartRequest, service: TimerService = Depends(get_service)) -> TimerOut:
    if payload.task_id is not None and service.store.get_task(payload.task_id) is None:
        raise HTTPException(status_code=404, detail="task not found")
    return _control(service, lambda store: store.start_timer(payload.duration_sec, task_id=payload.task_id))


@router.post("/timer/pause", response_model=TimerOut)
def pause_timer(service: TimerService = Depends(get_service)) -> TimerOut:
    return _control(service, lambda store: store.pause_timer())


@router.post("/timer/resume", response_model=TimerOut)
def resume_timer(service: TimerService = Depends(get_service)) -> TimerOut:
    return _control(service, lambda store: store.resume_timer())


@router.post("/timer/reset", response_model=TimerOut)
def reset_timer(payload: TimerResetRequest | None = None, service: TimerService = Depends(get_service)) -> TimerOut:
    duration = payload.duration_sec if payload else None
    return _control(service, lambda store: store.reset_timer(duration))


@router.post("/timer/distortion/enter", response_model=TimerOut)
def enter_distortion(service: TimerService = Depends(get_service)) -> TimerOut:
    return _control(service, lambda store: store.enter_distortion())


@router.post("/timer/distortion/exit", response_model=TimerOut)
def exit_distortion(service: TimerService = Depends(get_service)) -> TimerOut:
    return _control(service, lambda store: store.exit_distortion())


@router.post("/timer/distortion", response_model=TimerOut)
def set_distortion(payload: DistortionRequest, service: TimerService = Depends(get_service)) -> TimerOut:
    return _control(service, lambda store: store.set_distortion_level(payload.level))


@router.post("/timer/distortion/nudge", response_model=TimerOut)
def nudge_distortion(
    payload: DistortionNudgeRequest | None = None,
    service: TimerService = Depends(get_service),
) -> TimerOut:
    delta = payload.delta if payload else DISTORTION_STEP
    return _control(service, lambda store: store.nudge_distortion(delta))


@router.get("/timer/stream")
def timer_stream(service: TimerService = Depends(get_service)) -> StreamingResponse:
    subscriber = service.subscribe()

    def event_iter() -> Iterator[str]:
        try:
            while True:
                try:
                    event = subscriber.get(timeout=10)
                    yield f"data: {json.dumps(event, ensure_ascii=False, default=str)}\n\n"
                except queue.Empty:
                    yield ": keepalive\n\n"
        finally:
            service.unsubscribe(subscriber)

    return StreamingResponse(event_iter(), media_type="text/event-stream")

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from ...ledger import FocusSession
from ..deps import get_service
from ..schemas import FocusStartRequest, SessionOut
from ..timer_service import TimerService

router = APIRouter(prefix="/api/v1", tags=["focus"])


def session_out(session: FocusSession) -> SessionOut:
    return SessionOut(**session.to_dict())


@router.post("/focus/start", response_model=SessionOut)
def start_focus(payload: FocusStartRequest, service: TimerService = Depends(get_service)) -> SessionOut:
    if service.store.get_task(payload.task_id) is None:
        raise HTTPException(status_code=404, detail="task not found")
    session = service.mutate(lambda store: store.start_focus_session(payload.task_id))
    if session is None:
        raise HTTPException(status_code=409, detail="a session is already active or the task is closed")
    return session_out(session)


@router.post("/focus/end", response_model=SessionOut)
def end_focus(service: TimerService = Depends(get_service)) -> SessionOut:
    session = service.mutate(lambda store: store.end_focus_session())
    if session is None:
        raise HTTPException(status_code=409, detail="no active session")
    return session_out(session)


@router.get("/focus/sessions", response_model=list[SessionOut])
def list_sessions(
    task_id: str | None = None,
    limit: int = Query(default=30, ge=1, le=2000),
    service: TimerService = Depends(get_service),
) -> list[SessionOut]:
    items = service.store.sessions()
    if task_id:
        items = [item for item in items if item.task_id == task_id]
    return [session_out(item) for item in reversed(items[-limit:])]

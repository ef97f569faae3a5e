from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ...tasks import Task, TaskStatus, Transition, TransitionOutcome
from ..deps import get_service
from ..schemas import TaskCreateRequest, TaskOut, TaskPatchRequest, TaskStatusValue
from ..timer_service import TimerService

router = APIRouter(prefix="/api/v1", tags=["tasks"])


def task_out(task: Task) -> TaskOut:
    return TaskOut(**task.to_dict())


def _checked(result: Transition) -> Task:
    if result.outcome == TransitionOutcome.UNKNOWN_TASK:
        raise HTTPException(status_code=404, detail="task not found")
    if result.outcome == TransitionOutcome.ILLEGAL:
        status = result.before.status.value if result.before else "unknown"
        raise HTTPException(status_code=409, detail=f"task is {status}")
    if result.after is None:
        raise HTTPException(status_code=404, detail="task not found")
    return result.after


@router.get("/tasks", response_model=list[TaskOut])
def list_tasks(
    status: TaskStatusValue | None = None,
    service: TimerService = Depends(get_service),
) -> list[TaskOut]:
    items = service.store.tasks(TaskStatus(status) if status else None)
    return [task_out(item) for item in items]


@router.get("/tasks/{task_id}", response_model=TaskOut)
def get_task(task_id: str, service: TimerService = Depends(get_service)) -> TaskOut:
    task = service.store.get_task(task_id)
    if task is not None:
        return task_out(task)
    raise HTTPException(status_code=404, detail="task not found")


@router.post("/tasks", response_model=TaskOut, status_code=201)
def create_task(payload: TaskCreateRequest, service: TimerService = Depends(get_service)) -> TaskOut:
    task = service.mutate(
        lambda store: store.add_task(
            payload.title,
            description=payload.description,
            importance=payload.importance,
            deadline=payload.deadline,
        )
    )
    return task_out(task)


@router.patch("/tasks/{task_id}", response_model=TaskOut)
def update_task(
    task_id: str,
    payload: TaskPatchRequest,
    service: TimerService = Depends(get_service),
) -> TaskOut:
    patch = payload.model_dump(exclude_unset=True)
    return task_out(_checked(service.mutate(lambda store: store.update_task(task_id, patch))))


@router.delete("/tasks/{task_id}", status_code=204)
def delete_task(task_id: str, service: TimerService = Depends(get_service)) -> None:
    result = service.mutate(lambda store: store.delete_task(task_id))
    if result.outcome == TransitionOutcome.UNKNOWN_TASK:
        raise HTTPException(status_code=404, detail="task not found")


@router.post("/tasks/{task_id}/complete", response_model=TaskOut)
def complete_task(task_id: str, service: TimerService = Depends(get_service)) -> TaskOut:
    return task_out(_checked(service.mutate(lambda store: store.complete_task(task_id))))


@router.post("/tasks/{task_id}/procrastinate", response_model=TaskOut)
def procrastinate(task_id: str, service: TimerService = Depends(get_service)) -> TaskOut:
    return task_out(_checked(service.mutate(lambda store: store.procrastinate(task_id))))

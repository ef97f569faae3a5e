from __future__ import annotations

import platform

from fastapi import APIRouter, Depends

from ... import __version__
from ..deps import get_service
from ..schemas import MetaOut
from ..timer_service import TimerService

router = APIRouter(prefix="/api/v1", tags=["system"])


@router.get("/meta", response_model=MetaOut)
def meta(service: TimerService = Depends(get_service)) -> MetaOut:
    return MetaOut(
        app="TimeWarp",
        version=__version__,
        db_path=str(service.db_path),
        platform=platform.platform(),
    )

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI

from .. import __version__
from ..clock import Clock
from ..db import default_db_path
from ..ticker import DEFAULT_TICK_SECONDS
from .routes.focus import router as focus_router
from .routes.health import router as health_router
from .routes.meta import router as meta_router
from .routes.stats import router as stats_router
from .routes.tasks import router as tasks_router
from .routes.timer import router as timer_router
from .timer_service import TimerService


def create_app(
    db_path: Path | None = None,
    clock: Clock | None = None,
    tick_seconds: float = DEFAULT_TICK_SECONDS,
) -> FastAPI:
    """Build the API around one TimerService; also usable as `uvicorn --factory timewarp.api.app:create_app`."""
    service = TimerService(
        db_path=Path(db_path or default_db_path()),
        clock=clock,
        tick_seconds=tick_seconds,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        service.shutdown()

    app = FastAPI(title="TimeWarp API", version=__version__, lifespan=lifespan)
    app.state.timer_service = service

    app.include_router(health_router)
    app.include_router(meta_router)
    app.include_router(tasks_router)
    app.include_router(focus_router)
    app.include_router(timer_router)
    app.include_router(stats_router)

    return app

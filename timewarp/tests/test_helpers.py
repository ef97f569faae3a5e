from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
import shutil
import uuid

from timewarp.clock import FakeClock
from timewarp.store import TimewarpStore


@contextmanager
def local_tmp_dir():
    base = Path(__file__).resolve().parent / "_tmp"
    base.mkdir(parents=True, exist_ok=True)
    path = base / uuid.uuid4().hex
    path.mkdir(parents=True, exist_ok=False)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


def make_store(start: datetime | None = None) -> tuple[TimewarpStore, FakeClock]:
    clock = FakeClock(start=start or datetime(2026, 2, 13, 10, 0, tzinfo=timezone.utc))
    return TimewarpStore(clock=clock), clock

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

from .ledger import FocusSession
from .tasks import Task


def export_sessions_csv(
    sessions: Iterable[FocusSession],
    out_dir: Path,
    tasks: Iterable[Task] = (),
) -> Path:
    out_path = Path(out_dir)
    out_path.mkdir(parents=True, exist_ok=True)
    csv_path = out_path / "timewarp-sessions.csv"
    titles = {item.id: item.title for item in tasks}

    with csv_path.open("w", encoding="utf-8", newline="") as fp:
        writer = csv.writer(fp)
        writer.writerow(
            [
                "id",
                "task_id",
                "task",
                "start_time",
                "end_time",
                "duration",
                "distortion_level",
            ]
        )
        for item in sessions:
            writer.writerow(
                [
                    item.id,
                    item.task_id,
                    titles.get(item.task_id, ""),
                    item.start_time.isoformat(),
                    item.end_time.isoformat() if item.end_time else "",
                    f"{item.duration:.3f}",
                    f"{item.distortion_level:g}",
                ]
            )

    return csv_path

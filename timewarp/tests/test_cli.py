from __future__ import annotations

from contextlib import redirect_stdout
from datetime import datetime, timezone
import io
from pathlib import Path
import unittest

from timewarp import cli
from timewarp.clock import FakeClock
from timewarp.db import TimewarpDB
from timewarp.tests.test_helpers import local_tmp_dir


def run(db_path: Path, *args: str, clock: FakeClock | None = None) -> tuple[int, str]:
    out = io.StringIO()
    with redirect_stdout(out):
        code = cli.main(["--db", str(db_path), *args], clock=clock)
    return code, out.getvalue()


def only_task_id(db_path: Path) -> str:
    tasks = TimewarpDB(db_path).load_state()["tasks"]
    return tasks[0]["id"]


class TestCLI(unittest.TestCase):
    def test_add_list_and_first_task_achievement(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = tmp / "timewarp.sqlite"
            code, out = run(db_path, "add", "写周报", "--importance", "4")
            self.assertEqual(code, 0)
            self.assertIn("解锁成就：Baby Steps", out)

            code, out = run(db_path, "list")
            self.assertEqual(code, 0)
            self.assertIn("写周报", out)
            self.assertIn("pending", out)

    def test_avoid_until_task_flees(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = tmp / "timewarp.sqlite"
            run(db_path, "add", "健身")
            task_id = only_task_id(db_path)[:6]

            outputs = [run(db_path, "avoid", task_id) for _ in range(5)]
            self.assertIn("拖延度：80%", outputs[3][1])
            self.assertIn("任务逃跑了", outputs[4][1])
            self.assertIn("Procrastination Grand Master", outputs[4][1])

            code, _ = run(db_path, "avoid", task_id)
            self.assertEqual(code, 1)
            code, _ = run(db_path, "edit", task_id, "--title", "新标题")
            self.assertEqual(code, 1)

    def test_unknown_task_returns_error_code(self) -> None:
        with local_tmp_dir() as tmp:
            code, out = run(tmp / "timewarp.sqlite", "done", "deadbeef")
            self.assertEqual(code, 1)
            self.assertIn("未找到任务", out)

    def test_focus_runs_countdown_and_bills_time(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = tmp / "timewarp.sqlite"
            run(db_path, "add", "编码")
            task_id = only_task_id(db_path)
            clock = FakeClock(start=datetime(2026, 2, 13, 10, 0, tzinfo=timezone.utc))

            code, out = run(
                db_path, "focus", task_id, "--minutes", "0.5", "--tick-seconds", "10", clock=clock
            )
            self.assertEqual(code, 0)
            self.assertIn("专注完成", out)

            state = TimewarpDB(db_path).load_state()
            self.assertEqual(len(state["focus_sessions"]), 1)
            self.assertEqual(state["focus_sessions"][0]["duration"], 30)
            self.assertEqual(state["tasks"][0]["time_spent"], 30)
            self.assertEqual(state["tasks"][0]["status"], "in-progress")

    def test_focus_interrupted_records_session(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = tmp / "timewarp.sqlite"
            run(db_path, "add", "编码")
            task_id = only_task_id(db_path)
            clock = FakeClock(interrupt_on_sleep_call=2)

            code, out = run(db_path, "focus", task_id, "--tick-seconds", "1", clock=clock)
            self.assertEqual(code, 130)
            self.assertIn("专注已中断", out)
            sessions = TimewarpDB(db_path).load_state()["focus_sessions"]
            self.assertEqual(sessions[0]["duration"], 1)

    def test_focus_rejects_non_positive_tick_seconds(self) -> None:
        with local_tmp_dir() as tmp:
            with self.assertRaises(SystemExit) as exc:
                run(tmp / "timewarp.sqlite", "focus", "abc", "--tick-seconds", "-1")
            self.assertEqual(exc.exception.code, 2)

    def test_stats_report_and_export(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = tmp / "timewarp.sqlite"
            run(db_path, "add", "写周报")
            run(db_path, "done", only_task_id(db_path))

            code, out = run(db_path, "stats")
            self.assertEqual(code, 0)
            self.assertIn("累计完成次数: 1", out)

            code, out = run(db_path, "report", "--out-dir", str(tmp / "out"))
            self.assertEqual(code, 0)
            self.assertTrue(list((tmp / "out").glob("timewarp-*.md")))

            code, out = run(db_path, "export", "--out-dir", str(tmp / "out"))
            self.assertEqual(code, 0)
            self.assertTrue((tmp / "out" / "timewarp-sessions.csv").exists())


if __name__ == "__main__":
    unittest.main()

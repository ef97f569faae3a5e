from __future__ import annotations

from datetime import timedelta
import sqlite3
import unittest

from timewarp.db import TimewarpDB
from timewarp.store import TimewarpStore
from timewarp.tasks import TaskStatus
from timewarp.tests.test_helpers import local_tmp_dir, make_store


class TestTimewarpDB(unittest.TestCase):
    def test_schema_created(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = tmp / "data" / "timewarp.sqlite"
            TimewarpDB(db_path)

            with sqlite3.connect(db_path) as conn:
                rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()

            names = {row[0] for row in rows}
            self.assertTrue({"tasks", "focus_sessions", "achievements", "stats"} <= names)

    def test_empty_db_loads_empty_layout(self) -> None:
        with local_tmp_dir() as tmp:
            state = TimewarpDB(tmp / "timewarp.sqlite").load_state()
            self.assertEqual(state["tasks"], [])
            self.assertEqual(state["productivity_stats"], {})
            store, _ = make_store()
            store.load_state(state)
            self.assertEqual(store.stats.total_tasks_completed, 0)

    def test_save_and_reload_store(self) -> None:
        with local_tmp_dir() as tmp:
            db = TimewarpDB(tmp / "timewarp.sqlite")
            store, clock = make_store()
            keep = store.add_task("保留", importance=4, deadline=clock.now() + timedelta(days=2))
            done = store.add_task("完成")
            store.start_timer(600, task_id=keep.id)
            clock.advance(95.5)
            store.end_focus_session()
            store.complete_task(done.id)
            store.procrastinate(keep.id)
            db.save_state(store.export_state())

            restored = TimewarpStore(clock=clock)
            restored.load_state(db.load_state())

            self.assertEqual([item.id for item in restored.tasks()], [keep.id, done.id])
            reloaded = restored.get_task(keep.id)
            self.assertEqual(reloaded.deadline, keep.deadline)
            self.assertEqual(reloaded.time_spent, 95.5)
            self.assertEqual(reloaded.procrastination_level, 20)
            self.assertEqual(restored.get_task(done.id).status, TaskStatus.COMPLETED)
            self.assertEqual(restored.sessions(), store.sessions())
            self.assertEqual(restored.stats, store.stats)
            self.assertEqual(restored.achievements(), store.achievements())

    def test_save_replaces_previous_snapshot(self) -> None:
        with local_tmp_dir() as tmp:
            db = TimewarpDB(tmp / "timewarp.sqlite")
            store, _ = make_store()
            task = store.add_task("t")
            db.save_state(store.export_state())
            store.delete_task(task.id)
            db.save_state(store.export_state())
            self.assertEqual(db.load_state()["tasks"], [])


if __name__ == "__main__":
    unittest.main()

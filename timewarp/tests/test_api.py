from __future__ import annotations

import time
import unittest

from timewarp.db import TimewarpDB
from timewarp.tests.test_helpers import local_tmp_dir


class TestAPI(unittest.TestCase):
    def setUp(self) -> None:
        try:
            from fastapi.testclient import TestClient  # noqa: F401
            from timewarp.api.app import create_app  # noqa: F401
        except Exception as exc:  # pragma: no cover
            self.skipTest(f"fastapi test client unavailable: {exc}")

    def test_health_meta_and_openapi(self) -> None:
        from fastapi.testclient import TestClient

        from timewarp.api.app import create_app

        with local_tmp_dir() as tmp:
            db_path = tmp / "data" / "timewarp.sqlite"
            with TestClient(create_app(db_path=db_path)) as client:
                health = client.get("/api/v1/health")
                self.assertEqual(health.status_code, 200)
                self.assertEqual(health.json().get("status"), "ok")

                meta = client.get("/api/v1/meta")
                self.assertEqual(meta.status_code, 200)
                self.assertEqual(meta.json().get("db_path"), str(db_path))

                paths = client.get("/openapi.json").json().get("paths", {})
                self.assertIn("/api/v1/timer/stream", paths)
                self.assertIn("/api/v1/tasks/{task_id}/procrastinate", paths)

    def test_task_lifecycle_and_persistence(self) -> None:
        from fastapi.testclient import TestClient

        from timewarp.api.app import create_app

        with local_tmp_dir() as tmp:
            db_path = tmp / "timewarp.sqlite"
            with TestClient(create_app(db_path=db_path)) as client:
                created = client.post("/api/v1/tasks", json={"title": "api测试", "importance": 7})
                self.assertEqual(created.status_code, 201)
                task = created.json()
                self.assertEqual(task["status"], "pending")
                self.assertEqual(task["importance"], 5)

                self.assertEqual(client.post("/api/v1/tasks", json={"title": ""}).status_code, 422)

                patched = client.patch(f"/api/v1/tasks/{task['id']}", json={"description": "写点什么"})
                self.assertEqual(patched.status_code, 200)
                self.assertEqual(patched.json()["description"], "写点什么")

                done = client.post(f"/api/v1/tasks/{task['id']}/complete")
                self.assertEqual(done.status_code, 200)
                again = client.post(f"/api/v1/tasks/{task['id']}/complete")
                self.assertEqual(again.status_code, 200)

                blocked = client.post(f"/api/v1/tasks/{task['id']}/procrastinate")
                self.assertEqual(blocked.status_code, 409)
                locked = client.patch(f"/api/v1/tasks/{task['id']}", json={"title": "x"})
                self.assertEqual(locked.status_code, 409)

                stats = client.get("/api/v1/stats").json()
                self.assertEqual(stats["total_tasks_completed"], 1)
                self.assertEqual(stats["completion_rate"], 1.0)

                achievements = {item["id"]: item for item in client.get("/api/v1/achievements").json()}
                self.assertTrue(achievements["first-task"]["is_unlocked"])
                self.assertFalse(achievements["time-bender"]["is_unlocked"])

                self.assertEqual(client.get("/api/v1/tasks/missing").status_code, 404)
                self.assertEqual(client.post("/api/v1/tasks/missing/complete").status_code, 404)
                self.assertEqual(client.delete("/api/v1/tasks/missing").status_code, 404)

            saved = TimewarpDB(db_path).load_state()
            self.assertEqual(saved["tasks"][0]["status"], "completed")
            self.assertEqual(saved["productivity_stats"]["total_tasks_completed"], 1)

    def test_timer_controls_and_focus_session(self) -> None:
        from fastapi.testclient import TestClient

        from timewarp.api.app import create_app

        with local_tmp_dir() as tmp:
            app = create_app(db_path=tmp / "timewarp.sqlite", tick_seconds=0.01)
            with TestClient(app) as client:
                task = client.post("/api/v1/tasks", json={"title": "专注"}).json()

                self.assertEqual(client.post("/api/v1/timer/pause").status_code, 409)
                self.assertEqual(client.post("/api/v1/timer/start", json={"duration_sec": 0}).status_code, 422)

                started = client.post(
                    "/api/v1/timer/start",
                    json={"duration_sec": 600, "task_id": task["id"]},
                )
                self.assertEqual(started.status_code, 200)
                body = started.json()
                self.assertEqual(body["state"], "running")
                self.assertEqual(body["active_session"]["task_id"], task["id"])

                self.assertEqual(client.post("/api/v1/timer/distortion", json={"level": 50}).status_code, 409)
                entered = client.post("/api/v1/timer/distortion/enter")
                self.assertEqual(entered.json()["focus_state"], "distorted")
                level = client.post("/api/v1/timer/distortion", json={"level": 180})
                self.assertEqual(level.json()["distortion_level"], 100)
                self.assertEqual(level.json()["multiplier"], -1)

                time.sleep(0.05)
                paused = client.post("/api/v1/timer/pause")
                self.assertEqual(paused.json()["state"], "paused")
                self.assertEqual(client.post("/api/v1/timer/resume").json()["state"], "running")

                second = client.post("/api/v1/focus/start", json={"task_id": task["id"]})
                self.assertEqual(second.status_code, 409)

                ended = client.post("/api/v1/focus/end")
                self.assertEqual(ended.status_code, 200)
                self.assertEqual(ended.json()["distortion_level"], 100)
                self.assertEqual(client.post("/api/v1/focus/end").status_code, 409)

                reset = client.post("/api/v1/timer/reset")
                self.assertEqual(reset.json()["state"], "idle")
                self.assertEqual(reset.json()["remaining"], 600)

                sessions = client.get("/api/v1/focus/sessions").json()
                self.assertEqual(len(sessions), 1)
                task_after = client.get(f"/api/v1/tasks/{task['id']}").json()
                self.assertEqual(task_after["status"], "in-progress")

    def test_timer_start_refused_for_finished_task(self) -> None:
        from fastapi.testclient import TestClient

        from timewarp.api.app import create_app

        with local_tmp_dir() as tmp:
            app = create_app(db_path=tmp / "timewarp.sqlite", tick_seconds=0.01)
            with TestClient(app) as client:
                task = client.post("/api/v1/tasks", json={"title": "已完成"}).json()
                client.post(f"/api/v1/tasks/{task['id']}/complete")

                refused = client.post(
                    "/api/v1/timer/start",
                    json={"duration_sec": 600, "task_id": task["id"]},
                )
                self.assertEqual(refused.status_code, 409)
                state = client.get("/api/v1/timer/state").json()
                self.assertEqual(state["state"], "idle")
                self.assertIsNone(state["active_session"])
                self.assertEqual(client.get("/api/v1/focus/sessions").json(), [])

    def test_distortion_nudge(self) -> None:
        from fastapi.testclient import TestClient

        from timewarp.api.app import create_app

        with local_tmp_dir() as tmp:
            app = create_app(db_path=tmp / "timewarp.sqlite", tick_seconds=0.01)
            with TestClient(app) as client:
                self.assertEqual(client.post("/api/v1/timer/distortion/nudge").status_code, 409)
                client.post("/api/v1/timer/start", json={"duration_sec": 600})
                client.post("/api/v1/timer/distortion/enter")

                up = client.post("/api/v1/timer/distortion/nudge")
                self.assertEqual(up.status_code, 200)
                self.assertEqual(up.json()["distortion_level"], 10)
                down = client.post("/api/v1/timer/distortion/nudge", json={"delta": -30})
                self.assertEqual(down.json()["distortion_level"], 0)
                client.post("/api/v1/timer/reset")


if __name__ == "__main__":
    unittest.main()

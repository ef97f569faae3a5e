from __future__ import annotations

from datetime import datetime, timedelta, timezone
import unittest

from timewarp.achievements import (
    Achievement,
    AchievementBook,
    AchievementEvaluator,
    AchievementRule,
    AggregateView,
    finished_near_deadline,
)
from timewarp.ledger import FocusSession

NOW = datetime(2026, 2, 13, 10, 0, tzinfo=timezone.utc)


def view(**overrides: object) -> AggregateView:
    values: dict[str, object] = {
        "tasks_created_count": 0,
        "total_tasks_completed": 0,
        "tasks_fled_count": 0,
        "deadline_finishes": 0,
        "sessions": (),
    }
    values.update(overrides)
    return AggregateView(**values)  # type: ignore[arg-type]


def session(duration: float, level: float) -> FocusSession:
    return FocusSession(
        id="s",
        task_id="t",
        start_time=NOW,
        end_time=NOW + timedelta(seconds=duration),
        duration=duration,
        distortion_level=level,
    )


class TestEvaluator(unittest.TestCase):
    def setUp(self) -> None:
        self.evaluator = AchievementEvaluator()

    def test_empty_state_unlocks_nothing(self) -> None:
        self.assertEqual(self.evaluator.evaluate(view()), [])

    def test_counter_rules(self) -> None:
        rules = self.evaluator.evaluate(
            view(tasks_created_count=1, total_tasks_completed=5, tasks_fled_count=1, deadline_finishes=3)
        )
        self.assertEqual(
            rules,
            [
                AchievementRule.FIRST_TASK,
                AchievementRule.FIVE_TASKS_COMPLETED,
                AchievementRule.PROCRASTINATION_MASTER,
                AchievementRule.DEADLINE_WARRIOR,
            ],
        )
        self.assertNotIn(
            AchievementRule.FIVE_TASKS_COMPLETED,
            self.evaluator.evaluate(view(total_tasks_completed=4)),
        )
        self.assertNotIn(
            AchievementRule.DEADLINE_WARRIOR,
            self.evaluator.evaluate(view(deadline_finishes=2)),
        )

    def test_time_bender_needs_both_thresholds(self) -> None:
        self.assertIn(
            AchievementRule.TIME_BENDER,
            self.evaluator.evaluate(view(sessions=(session(14401, 76),))),
        )
        for item in (session(14400, 90), session(20000, 75), session(100, 100)):
            self.assertNotIn(
                AchievementRule.TIME_BENDER,
                self.evaluator.evaluate(view(sessions=(item,))),
            )

    def test_deadline_window(self) -> None:
        deadline = NOW
        self.assertTrue(finished_near_deadline(deadline - timedelta(seconds=600), deadline))
        self.assertTrue(finished_near_deadline(deadline, deadline))
        self.assertFalse(finished_near_deadline(deadline - timedelta(seconds=601), deadline))
        self.assertFalse(finished_near_deadline(deadline + timedelta(seconds=1), deadline))
        self.assertFalse(finished_near_deadline(deadline, None))


class TestAchievementBook(unittest.TestCase):
    def test_unlock_is_idempotent(self) -> None:
        book = AchievementBook()
        first = book.unlock(AchievementRule.FIRST_TASK, at=NOW)
        second = book.unlock(AchievementRule.FIRST_TASK, at=NOW + timedelta(days=1))
        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.assertEqual(book.get(AchievementRule.FIRST_TASK).unlocked_at, NOW)
        self.assertEqual([item.id for item in book.unlocked()], [AchievementRule.FIRST_TASK])

    def test_catalog_covers_every_rule(self) -> None:
        book = AchievementBook()
        self.assertEqual([item.id for item in book.all()], list(AchievementRule))
        self.assertTrue(all(item.title for item in book.all()))

    def test_from_dict_rejects_unknown_rule(self) -> None:
        with self.assertRaises(ValueError):
            Achievement.from_dict({"id": "speed-runner", "is_unlocked": True})


if __name__ == "__main__":
    unittest.main()

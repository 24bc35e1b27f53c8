import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import Mock

from gamepanel.core import state_db
from gamepanel.services import scheduler_loop
from gamepanel.state import SchedulerState

UTC = timezone.utc
BOUNDARY = datetime(2026, 3, 2, 12, 5, 0, tzinfo=UTC)


class _SchedulerTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.db_path = Path(self._tmp.name) / "panel.sqlite3"
        state_db.initialize_state_db(db_path=self.db_path)
        self.ctx = SimpleNamespace(
            STATE_DB_PATH=self.db_path,
            DISPLAY_TZ=UTC,
            SCHEDULER_INTERVAL_SECONDS=3600.0,
            SCHEDULER_DUE_WINDOW_SECONDS=65.0,
            SCHEDULER_DEDUPE_SECONDS=10.0,
            scheduler_state=SchedulerState(),
            start_schedule_run=Mock(),
            log_panel_log=Mock(),
            log_panel_exception=Mock(),
        )

    def _create(self, name, cron):
        return state_db.create_schedule(self.db_path, name=name, cron=cron)


class SchedulerTickTests(_SchedulerTestCase):
    def test_due_schedules_fire_and_record_their_own_run_times(self):
        a = self._create("A", "*/5 * * * *")
        b = self._create("B", "5 12 * * *")
        fired = scheduler_loop.scheduler_tick(self.ctx, now=BOUNDARY + timedelta(seconds=2))

        self.assertCountEqual(fired, [a["id"], b["id"]])
        self.assertEqual(self.ctx.start_schedule_run.call_count, 2)
        stored_a = state_db.get_schedule(self.db_path, a["id"])
        stored_b = state_db.get_schedule(self.db_path, b["id"])
        self.assertEqual(stored_a["last_run"], BOUNDARY)
        self.assertEqual(stored_a["next_run"], BOUNDARY + timedelta(minutes=5))
        self.assertEqual(stored_b["last_run"], BOUNDARY)
        self.assertEqual(stored_b["next_run"], BOUNDARY + timedelta(days=1))

    def test_second_tick_inside_same_window_does_not_refire(self):
        self._create("A", "*/5 * * * *")
        scheduler_loop.scheduler_tick(self.ctx, now=BOUNDARY)
        fired = scheduler_loop.scheduler_tick(self.ctx, now=BOUNDARY + timedelta(seconds=30))
        self.assertEqual(fired, [])
        self.assertEqual(self.ctx.start_schedule_run.call_count, 1)

    def test_not_due_between_fire_times(self):
        self._create("A", "*/5 * * * *")
        self.assertEqual(scheduler_loop.scheduler_tick(self.ctx, now=BOUNDARY + timedelta(minutes=2)), [])
        self.ctx.start_schedule_run.assert_not_called()

    def test_malformed_cron_does_not_block_other_schedules(self):
        self._create("Broken", "not a cron")
        good = self._create("Good", "*/5 * * * *")
        fired = scheduler_loop.scheduler_tick(self.ctx, now=BOUNDARY)
        self.assertEqual(fired, [good["id"]])
        self.ctx.log_panel_exception.assert_called_once()

    def test_executor_failure_is_isolated_per_schedule(self):
        first = self._create("First", "*/5 * * * *")
        second = self._create("Second", "*/5 * * * *")

        def start_run(schedule):
            if schedule["id"] == first["id"]:
                raise RuntimeError("thread start failed")

        self.ctx.start_schedule_run = Mock(side_effect=start_run)
        fired = scheduler_loop.scheduler_tick(self.ctx, now=BOUNDARY)
        self.assertEqual(fired, [second["id"]])
        self.assertIsNone(state_db.get_schedule(self.db_path, first["id"])["last_run"])
        self.ctx.log_panel_exception.assert_called_once()

    def test_inactive_schedules_are_skipped(self):
        off = self._create("Off", "*/5 * * * *")
        state_db.update_schedule(self.db_path, off["id"], is_active=False)
        self.assertEqual(scheduler_loop.scheduler_tick(self.ctx, now=BOUNDARY), [])

    def test_schedule_receives_its_ordered_tasks(self):
        schedule = self._create("Restart", "*/5 * * * *")
        state_db.add_schedule_task(self.db_path, schedule["id"], action="power", payload="start", sequence=2)
        state_db.add_schedule_task(self.db_path, schedule["id"], action="power", payload="stop", sequence=1)
        scheduler_loop.scheduler_tick(self.ctx, now=BOUNDARY)
        (passed,), _ = self.ctx.start_schedule_run.call_args
        self.assertEqual([task["payload"] for task in passed["tasks"]], ["stop", "start"])


class RebootScheduleTests(_SchedulerTestCase):
    def test_reboot_schedule_runs_once_at_startup_only(self):
        reboot = self._create("Boot", "@reboot")
        self.assertEqual(scheduler_loop.scheduler_tick(self.ctx, now=BOUNDARY), [])
        fired = scheduler_loop.run_reboot_schedules(self.ctx, now=BOUNDARY)
        self.assertEqual(fired, [reboot["id"]])
        stored = state_db.get_schedule(self.db_path, reboot["id"])
        self.assertEqual(stored["last_run"], BOUNDARY)
        self.assertIsNone(stored["next_run"])

    def test_scheduler_thread_starts_once_and_stops(self):
        reboot = self._create("Boot", "@reboot")
        self.assertTrue(scheduler_loop.start_scheduler_once(self.ctx))
        self.assertFalse(scheduler_loop.start_scheduler_once(self.ctx))
        thread = self.ctx.scheduler_state.thread
        self.assertTrue(thread.daemon)

        self.assertTrue(scheduler_loop.stop_scheduler(self.ctx, timeout=5))
        self.assertFalse(thread.is_alive())
        self.assertFalse(scheduler_loop.stop_scheduler(self.ctx))
        (passed,), _ = self.ctx.start_schedule_run.call_args
        self.assertEqual(passed["id"], reboot["id"])


if __name__ == "__main__":
    unittest.main()

import tempfile
import unittest
from datetime import timezone
from pathlib import Path

from flask import Flask, session

from gamepanel.core import action_logging
from gamepanel.core.action_logging import build_loggers, sanitize_log_fragment


class ActionLoggingTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.log_dir = Path(self._tmp.name) / "logs"
        self.action_file = self.log_dir / "panel-actions.log"
        self.system_file = self.log_dir / "panel.log"
        self.log_action, self.log_system, self.log_exception = build_loggers(
            timezone.utc, self.log_dir, self.action_file, self.system_file
        )

    def test_background_lines_use_panel_identity(self):
        self.log_system("schedule-run", command="schedule=Nightly\nid=1")
        line = self.system_file.read_text(encoding="utf-8").strip()
        self.assertIn("<panel:system> [panel/schedule-run] schedule=Nightly id=1", line)
        self.assertFalse(self.action_file.exists())

    def test_request_lines_use_forwarded_ip_and_session_user(self):
        app = Flask(__name__)
        app.secret_key = "test"
        with app.test_request_context("/api/server", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}):
            session["username"] = "alex"
            self.log_action("server-start", rejection_message="Access Denied")
        line = self.action_file.read_text(encoding="utf-8").strip()
        self.assertTrue(line.endswith("<203.0.113.9:alex> [panel/server-start] rejected: Access Denied"))

    def test_exception_goes_to_system_log(self):
        try:
            raise ValueError("bad cron")
        except ValueError as exc:
            self.log_exception("scheduler schedule=abc", exc)
        line = self.system_file.read_text(encoding="utf-8")
        self.assertIn("[panel/error] rejected: scheduler schedule=abc: ValueError: bad cron | traceback:", line)
        self.assertEqual(len(line.splitlines()), 1)

    def test_rotation_keeps_numbered_copies(self):
        self.log_dir.mkdir(parents=True)
        self.system_file.write_text("x" * 32, encoding="utf-8")
        action_logging._rotate_log_file(self.system_file, max_bytes=16, backup_count=2)
        self.assertFalse(self.system_file.exists())
        self.assertTrue((self.log_dir / "panel.log.1").exists())

    def test_sanitize(self):
        self.assertEqual(sanitize_log_fragment("  a\r\nb\tc  "), "a b c")
        self.assertEqual(sanitize_log_fragment(None), "")


if __name__ == "__main__":
    unittest.main()

import tempfile
import threading
import unittest
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import Mock, patch

from gamepanel.core import state_db
from gamepanel.services import backup_service
from gamepanel.state import BackupState


class BackupServiceTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        base = Path(self._tmp.name)
        self.server_root = base / "server"
        (self.server_root / "world" / "region").mkdir(parents=True)
        (self.server_root / "cache").mkdir()
        (self.server_root / "logs").mkdir()
        (self.server_root / "server.properties").write_text("motd=hello\n", encoding="utf-8")
        (self.server_root / "world" / "region" / "r.0.0.mca").write_bytes(b"\x00" * 64)
        (self.server_root / "world" / "session.lock").write_text("lock", encoding="utf-8")
        (self.server_root / "logs" / "latest.log").write_text("noise", encoding="utf-8")
        (self.server_root / "cache" / "mojang.jar").write_bytes(b"jar")
        self.ctx = SimpleNamespace(
            SERVER_ROOT=self.server_root,
            BACKUP_DIR=base / "backups",
            STATE_DB_PATH=base / "data" / "panel.sqlite3",
            backup_state=BackupState(lock=threading.Lock(), run_lock=threading.Lock(), last_error=""),
            log_panel_log=Mock(),
            log_panel_exception=Mock(),
        )

    def test_archive_skips_logs_locks_and_excluded_dirs(self):
        result = backup_service.create_backup(self.ctx, trigger="manual")
        self.assertTrue(result["ok"])
        record = result["backup"]
        self.assertRegex(record["name"], r"^Backup-\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}\.zip$")
        with zipfile.ZipFile(record["path"]) as archive:
            names = sorted(archive.namelist())
        self.assertEqual(names, ["server.properties", "world/region/r.0.0.mca"])
        self.assertEqual(list(self.ctx.BACKUP_DIR.glob("*.partial")), [])
        self.assertEqual([item["id"] for item in backup_service.list_backups(self.ctx)], [record["id"]])

    def test_backup_dir_inside_server_root_is_not_archived(self):
        self.ctx.BACKUP_DIR = self.server_root / "archives"
        result = backup_service.create_backup(self.ctx)
        with zipfile.ZipFile(result["backup"]["path"]) as archive:
            self.assertFalse(any(name.startswith("archives/") for name in archive.namelist()))

    def test_busy_lock_rejects_second_backup(self):
        self.ctx.backup_state.run_lock.acquire()
        try:
            result = backup_service.create_backup(self.ctx, trigger="schedule")
        finally:
            self.ctx.backup_state.run_lock.release()
        self.assertEqual(result["error"], "backup_running")
        self.assertFalse(self.ctx.BACKUP_DIR.exists())

    def test_missing_server_root(self):
        self.ctx.SERVER_ROOT = self.server_root / "gone"
        result = backup_service.create_backup(self.ctx)
        self.assertEqual(result["error"], "server_root_missing")
        self.assertIn("gone", self.ctx.backup_state.last_error)
        self.assertFalse(self.ctx.backup_state.run_lock.locked())

    def test_delete_removes_file_and_record(self):
        record = backup_service.create_backup(self.ctx)["backup"]
        self.assertTrue(backup_service.delete_backup(self.ctx, record["id"]))
        self.assertFalse(Path(record["path"]).exists())
        self.assertIsNone(state_db.get_backup(self.ctx.STATE_DB_PATH, record["id"]))
        self.assertFalse(backup_service.delete_backup(self.ctx, record["id"]))

    def test_backups_in_the_same_second_get_their_own_archives(self):
        fixed = datetime(2026, 3, 2, 4, 0, 0, tzinfo=timezone.utc)
        with patch.object(backup_service, "datetime") as clock:
            clock.now.return_value = fixed
            first = backup_service.create_backup(self.ctx, trigger="schedule")["backup"]
            second = backup_service.create_backup(self.ctx, trigger="schedule")["backup"]

        self.assertEqual(first["name"], "Backup-2026-03-02_04-00-00.zip")
        self.assertEqual(second["name"], "Backup-2026-03-02_04-00-00-1.zip")
        self.assertNotEqual(first["path"], second["path"])
        self.assertEqual(len(list(self.ctx.BACKUP_DIR.glob("*.zip"))), 2)

        self.assertTrue(backup_service.delete_backup(self.ctx, first["id"]))
        self.assertTrue(Path(second["path"]).exists())

    def test_size_text(self):
        self.assertEqual(backup_service.format_size_mb(3 * 1024 * 1024), "3.00 MB")


if __name__ == "__main__":
    unittest.main()

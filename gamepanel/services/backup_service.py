"""Server directory backup archives for the panel."""

from datetime import datetime, timezone
from fnmatch import fnmatch
from pathlib import Path
import os
import zipfile

from gamepanel.core import state_db

# Directory names skipped anywhere under the server root.
EXCLUDED_DIR_NAMES = frozenset({
    "backups",
    "node_modules",
    ".next",
    ".git",
    "cache",
    "libraries",
    "versions",
    "web",
})
# Lock files are held open by a running server on Windows.
EXCLUDED_FILE_PATTERNS = ("*.log", "*.lock")
ZIP_COMPRESS_LEVEL = 1


def backup_file_name(now=None, attempt=0):
    """Return ``Backup-YYYY-MM-DD_HH-MM-SS[-N].zip`` for the given UTC instant."""
    moment = now or datetime.now(timezone.utc)
    suffix = f"-{attempt}" if attempt else ""
    return f"Backup-{moment.strftime('%Y-%m-%d_%H-%M-%S')}{suffix}.zip"


def unused_backup_name(backup_dir, now=None):
    """First name for ``now`` with no archive (or partial) already in ``backup_dir``.

    Callers hold the backup run lock, so the name stays free until written.
    """
    moment = now or datetime.now(timezone.utc)
    attempt = 0
    while True:
        name = backup_file_name(moment, attempt)
        if not (backup_dir / name).exists() and not (backup_dir / f".{name}.partial").exists():
            return name
        attempt += 1


def format_size_mb(size_bytes):
    return f"{size_bytes / 1024 / 1024:.2f} MB"


def _is_excluded_file(name):
    return any(fnmatch(name, pattern) for pattern in EXCLUDED_FILE_PATTERNS)


def iter_backup_sources(server_root, skip_dirs=()):
    """Yield ``(absolute_path, archive_name)`` for files that belong in a backup."""
    root = Path(server_root)
    skip = {Path(p).resolve() for p in skip_dirs}
    for current, dirnames, filenames in os.walk(root):
        current_path = Path(current)
        dirnames[:] = sorted(
            name for name in dirnames
            if name not in EXCLUDED_DIR_NAMES and (current_path / name).resolve() not in skip
        )
        for name in sorted(filenames):
            if _is_excluded_file(name):
                continue
            path = current_path / name
            yield path, path.relative_to(root).as_posix()


def _write_archive(server_root, target, skip_dirs):
    """Write the zip archive; return the number of unreadable files skipped."""
    skipped = 0
    with zipfile.ZipFile(
        target,
        "w",
        compression=zipfile.ZIP_DEFLATED,
        compresslevel=ZIP_COMPRESS_LEVEL,
    ) as archive:
        for path, arcname in iter_backup_sources(server_root, skip_dirs):
            try:
                archive.write(path, arcname)
            except OSError:
                skipped += 1
    return skipped


def create_backup(ctx, trigger="manual"):
    """Archive the server directory into ``BACKUP_DIR`` with single-flight locking."""
    backup_state = ctx.backup_state
    # Non-blocking lock keeps scheduled and manual backups from piling up.
    if not backup_state.run_lock.acquire(blocking=False):
        ctx.log_panel_log("backup", command=f"trigger={trigger}", rejection_message="Backup already running.")
        return {"ok": False, "error": "backup_running", "message": "A backup is already running."}
    try:
        with backup_state.lock:
            backup_state.last_error = ""
        server_root = Path(ctx.SERVER_ROOT)
        if not server_root.is_dir():
            message = f"Server directory not found: {server_root}"
            with backup_state.lock:
                backup_state.last_error = message
            ctx.log_panel_log("backup", command=f"trigger={trigger}", rejection_message=message)
            return {"ok": False, "error": "server_root_missing", "message": message}

        backup_dir = Path(ctx.BACKUP_DIR)
        backup_dir.mkdir(parents=True, exist_ok=True)
        name = unused_backup_name(backup_dir)
        target = backup_dir / name
        partial = backup_dir / f".{name}.partial"
        try:
            skipped = _write_archive(server_root, partial, skip_dirs=(backup_dir,))
            os.replace(partial, target)
        except (OSError, zipfile.BadZipFile) as exc:
            partial.unlink(missing_ok=True)
            message = f"Backup failed: {exc}"
            with backup_state.lock:
                backup_state.last_error = message
            ctx.log_panel_exception("create_backup", exc)
            return {"ok": False, "error": "backup_failed", "message": message}

        size_text = format_size_mb(target.stat().st_size)
        record = state_db.record_backup(ctx.STATE_DB_PATH, name=name, path=target, size_text=size_text)
        details = f"trigger={trigger} file={name} size={size_text}"
        if skipped:
            details += f" skipped={skipped}"
        ctx.log_panel_log("backup", command=details)
        return {"ok": True, "backup": record}
    finally:
        backup_state.run_lock.release()


def list_backups(ctx):
    return state_db.list_backups(ctx.STATE_DB_PATH)


def delete_backup(ctx, backup_id):
    """Remove the archive file (if still present) and its record."""
    record = state_db.get_backup(ctx.STATE_DB_PATH, backup_id)
    if record is None:
        return False
    try:
        Path(record["path"]).unlink(missing_ok=True)
    except OSError as exc:
        # The record is dropped even when the file cannot be.
        ctx.log_panel_exception("delete_backup", exc)
    return state_db.delete_backup_record(ctx.STATE_DB_PATH, backup_id)

"""Panel audit/system log writers.

Every line looks like::

    Mar 02 12:05:00 <203.0.113.9:alex> [panel/server-start] pid=4242 cwd=/srv/game

Writes come from request threads, the scheduler thread and per-schedule
worker threads, so each file gets its own lock. A failed write is dropped;
it never reaches the caller.
"""

from datetime import datetime
import os
import threading
import traceback
from flask import request, has_request_context, session

LOG_ROTATE_MAX_BYTES = 5 * 1024 * 1024
LOG_ROTATE_BACKUP_COUNT = 5
TRACEBACK_LIMIT_CHARS = 700

_file_locks_guard = threading.Lock()
_file_locks = {}


def _lock_for(path):
    key = str(path)
    with _file_locks_guard:
        lock = _file_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _file_locks[key] = lock
        return lock


def sanitize_log_fragment(text):
    """Collapse whitespace and newlines so one event stays one line."""
    return " ".join(str(text or "").split())


def get_client_ip():
    """Proxy-aware client address; ``panel`` for scheduler/background writes."""
    if not has_request_context():
        return "panel"
    forwarded = (request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    return (request.headers.get("X-Real-IP") or request.remote_addr or "").strip() or "panel"


def get_client_username():
    if not has_request_context():
        return "system"
    return sanitize_log_fragment(session.get("username")) or "anonymous"


def _rotate_log_file(path, max_bytes=LOG_ROTATE_MAX_BYTES, backup_count=LOG_ROTATE_BACKUP_COUNT):
    """Shift ``name.1 .. name.N`` up by one once ``path`` reaches ``max_bytes``."""
    if max_bytes <= 0 or backup_count <= 0:
        return
    try:
        if not path.exists() or path.stat().st_size < max_bytes:
            return
        for idx in range(backup_count - 1, 0, -1):
            older = path.with_name(f"{path.name}.{idx}")
            if older.exists():
                os.replace(older, path.with_name(f"{path.name}.{idx + 1}"))
        os.replace(path, path.with_name(f"{path.name}.1"))
    except OSError:
        pass


def format_log_line(timestamp, action, command=None, rejection_message=None):
    """Render one audit line for the current request (or background) caller."""
    who = f"{sanitize_log_fragment(get_client_ip()) or 'unknown'}:{get_client_username()}"
    parts = [f"{timestamp} <{who}> [panel/{sanitize_log_fragment(action) or 'unknown'}]"]
    details = sanitize_log_fragment(command)
    if details:
        parts.append(details)
    rejection = sanitize_log_fragment(rejection_message)
    if rejection:
        parts.append(f"rejected: {rejection}")
    return " ".join(parts)


def make_log_action(display_tz, log_dir, log_file):
    """Return ``log(action, command=None, rejection_message=None)`` bound to ``log_file``."""
    file_lock = _lock_for(log_file)

    def log_action(action, command=None, rejection_message=None):
        timestamp = datetime.now(tz=display_tz).strftime("%b %d %H:%M:%S")
        line = format_log_line(timestamp, action, command, rejection_message)
        with file_lock:
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
                _rotate_log_file(log_file)
                with log_file.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError:
                pass

    return log_action


def make_log_exception(log_action):
    """Return ``log_exception(context, exc)`` writing an ``[panel/error]`` line."""

    def log_exception(context, exc):
        message = f"{context}: {type(exc).__name__}"
        text = sanitize_log_fragment(exc)
        if text:
            message += f": {text}"
        tb = sanitize_log_fragment(" | ".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
        if tb:
            message += f" | traceback: {tb[:TRACEBACK_LIMIT_CHARS]}"
        log_action("error", rejection_message=message)

    return log_exception


def build_loggers(display_tz, log_dir, action_log_file, system_log_file):
    """Create the audit writer, the system writer and the exception logger.

    User-initiated actions go to ``action_log_file``; supervisor, scheduler
    and task events plus exceptions go to ``system_log_file``.
    """
    log_panel_action = make_log_action(display_tz, log_dir, action_log_file)
    log_panel_log = make_log_action(display_tz, log_dir, system_log_file)
    return log_panel_action, log_panel_log, make_log_exception(log_panel_log)

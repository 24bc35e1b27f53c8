"""SQLite-backed structured state storage helpers.

This module stores only structured panel records:
- schedules and their ordered tasks
- backup archive records

Backup archives themselves and the managed server's files remain on disk.
"""

from __future__ import annotations

import sqlite3
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path


def _connect(db_path):
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=5.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def _create_tables(conn):
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schedules (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL DEFAULT '',
            cron TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            last_run TEXT,
            next_run TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schedule_tasks (
            id TEXT PRIMARY KEY,
            schedule_id TEXT NOT NULL REFERENCES schedules(id) ON DELETE CASCADE,
            action TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '',
            delay INTEGER NOT NULL DEFAULT 0,
            sequence INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_schedule_tasks_order ON schedule_tasks(schedule_id, sequence)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS backups (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            path TEXT NOT NULL,
            size TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        )
        """
    )


def initialize_state_db(
    *,
    db_path,
    log_exception=None,
):
    """Create SQLite schema."""
    try:
        with _connect(db_path) as conn:
            _create_tables(conn)
            conn.commit()
        return True
    except Exception as exc:
        if callable(log_exception):
            try:
                log_exception("initialize_state_db", exc)
            except Exception:
                pass
        return False


def format_timestamp(value):
    """Serialize an aware datetime as UTC ISO text (``None`` stays ``None``)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(text):
    """Parse stored ISO text back into an aware datetime."""
    raw = str(text or "").strip()
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def new_task_sequence():
    """Insertion-time sequence value (epoch milliseconds)."""
    return time.time_ns() // 1_000_000


def _task_from_row(row):
    return {
        "id": row["id"],
        "schedule_id": row["schedule_id"],
        "action": row["action"],
        "payload": row["payload"] or "",
        "delay": int(row["delay"] or 0),
        "sequence": int(row["sequence"] or 0),
    }


def _schedule_from_row(row, tasks):
    return {
        "id": row["id"],
        "name": row["name"],
        "cron": row["cron"],
        "is_active": bool(row["is_active"]),
        "last_run": parse_timestamp(row["last_run"]),
        "next_run": parse_timestamp(row["next_run"]),
        "created_at": row["created_at"],
        "tasks": tasks,
    }


def _load_tasks(conn, schedule_ids):
    """Return schedule id -> tasks ordered by sequence, ties by insertion order."""
    grouped = {schedule_id: [] for schedule_id in schedule_ids}
    if not grouped:
        return grouped
    placeholders = ",".join("?" for _ in grouped)
    rows = conn.execute(
        f"""
        SELECT id, schedule_id, action, payload, delay, sequence
        FROM schedule_tasks
        WHERE schedule_id IN ({placeholders})
        ORDER BY sequence ASC, rowid ASC
        """,
        tuple(grouped),
    ).fetchall()
    for row in rows:
        grouped[row["schedule_id"]].append(_task_from_row(row))
    return grouped


def _load_schedules(conn, where_sql="", params=()):
    rows = conn.execute(
        f"""
        SELECT id, name, cron, is_active, last_run, next_run, created_at
        FROM schedules
        {where_sql}
        ORDER BY created_at DESC, rowid DESC
        """,
        params,
    ).fetchall()
    tasks = _load_tasks(conn, [row["id"] for row in rows])
    return [_schedule_from_row(row, tasks[row["id"]]) for row in rows]


def list_schedules(db_path):
    """Return every schedule (newest first) with nested ordered tasks."""
    with _connect(db_path) as conn:
        _create_tables(conn)
        return _load_schedules(conn)


def list_active_schedules(db_path):
    """Return active schedules with nested tasks ordered by sequence."""
    with _connect(db_path) as conn:
        _create_tables(conn)
        return _load_schedules(conn, "WHERE is_active = 1")


def get_schedule(db_path, schedule_id):
    """Return one schedule with tasks, or ``None``."""
    with _connect(db_path) as conn:
        _create_tables(conn)
        found = _load_schedules(conn, "WHERE id = ?", (str(schedule_id),))
    return found[0] if found else None


def create_schedule(db_path, *, name, cron, is_active=True):
    """Insert one schedule and return it."""
    schedule_id = uuid.uuid4().hex
    with _connect(db_path) as conn:
        _create_tables(conn)
        conn.execute(
            """
            INSERT INTO schedules (id, name, cron, is_active, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                schedule_id,
                str(name or "").strip(),
                str(cron or "").strip(),
                1 if is_active else 0,
                format_timestamp(datetime.now(timezone.utc)),
            ),
        )
        conn.commit()
    return get_schedule(db_path, schedule_id)


def update_schedule(db_path, schedule_id, *, name=None, cron=None, is_active=None):
    """Apply user edits to a schedule; run times are left to the scheduler."""
    assignments = []
    params = []
    if name is not None:
        assignments.append("name = ?")
        params.append(str(name).strip())
    if cron is not None:
        assignments.append("cron = ?")
        params.append(str(cron).strip())
    if is_active is not None:
        assignments.append("is_active = ?")
        params.append(1 if is_active else 0)
    if assignments:
        with _connect(db_path) as conn:
            _create_tables(conn)
            conn.execute(
                f"UPDATE schedules SET {', '.join(assignments)} WHERE id = ?",
                (*params, str(schedule_id)),
            )
            conn.commit()
    return get_schedule(db_path, schedule_id)


def delete_schedule(db_path, schedule_id):
    """Delete a schedule and its tasks; return whether a row was removed."""
    with _connect(db_path) as conn:
        _create_tables(conn)
        conn.execute("DELETE FROM schedule_tasks WHERE schedule_id = ?", (str(schedule_id),))
        cursor = conn.execute("DELETE FROM schedules WHERE id = ?", (str(schedule_id),))
        conn.commit()
        return cursor.rowcount > 0


def update_run_times(db_path, schedule_id, last_run, next_run):
    """Persist scheduler bookkeeping for exactly one schedule row."""
    with _connect(db_path) as conn:
        _create_tables(conn)
        conn.execute(
            "UPDATE schedules SET last_run = ?, next_run = ? WHERE id = ?",
            (format_timestamp(last_run), format_timestamp(next_run), str(schedule_id)),
        )
        conn.commit()


def add_schedule_task(db_path, schedule_id, *, action, payload="", delay=0, sequence=None):
    """Append a task to a schedule; returns ``None`` when the schedule is gone."""
    task_id = uuid.uuid4().hex
    seq = new_task_sequence() if sequence is None else int(sequence)
    with _connect(db_path) as conn:
        _create_tables(conn)
        exists = conn.execute(
            "SELECT 1 FROM schedules WHERE id = ? LIMIT 1", (str(schedule_id),)
        ).fetchone()
        if exists is None:
            return None
        conn.execute(
            """
            INSERT INTO schedule_tasks (id, schedule_id, action, payload, delay, sequence)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                task_id,
                str(schedule_id),
                str(action or "").strip(),
                str(payload or ""),
                max(0, int(delay or 0)),
                seq,
            ),
        )
        conn.commit()
        row = conn.execute(
            "SELECT id, schedule_id, action, payload, delay, sequence FROM schedule_tasks WHERE id = ?",
            (task_id,),
        ).fetchone()
    return _task_from_row(row)


def delete_schedule_task(db_path, task_id):
    """Delete one task; return whether a row was removed."""
    with _connect(db_path) as conn:
        _create_tables(conn)
        cursor = conn.execute("DELETE FROM schedule_tasks WHERE id = ?", (str(task_id),))
        conn.commit()
        return cursor.rowcount > 0


def _backup_from_row(row):
    return {
        "id": row["id"],
        "name": row["name"],
        "path": row["path"],
        "size": row["size"],
        "created_at": row["created_at"],
    }


def record_backup(db_path, *, name, path, size_text):
    """Insert one backup archive record and return it."""
    item = {
        "id": uuid.uuid4().hex,
        "name": str(name),
        "path": str(path),
        "size": str(size_text or ""),
        "created_at": format_timestamp(datetime.now(timezone.utc)),
    }
    with _connect(db_path) as conn:
        _create_tables(conn)
        conn.execute(
            "INSERT INTO backups (id, name, path, size, created_at) VALUES (?, ?, ?, ?, ?)",
            (item["id"], item["name"], item["path"], item["size"], item["created_at"]),
        )
        conn.commit()
    return item


def list_backups(db_path):
    """Return backup records, newest first."""
    with _connect(db_path) as conn:
        _create_tables(conn)
        rows = conn.execute(
            "SELECT id, name, path, size, created_at FROM backups ORDER BY created_at DESC, rowid DESC"
        ).fetchall()
    return [_backup_from_row(row) for row in rows]


def get_backup(db_path, backup_id):
    with _connect(db_path) as conn:
        _create_tables(conn)
        row = conn.execute(
            "SELECT id, name, path, size, created_at FROM backups WHERE id = ? LIMIT 1",
            (str(backup_id),),
        ).fetchone()
    return _backup_from_row(row) if row is not None else None


def delete_backup_record(db_path, backup_id):
    with _connect(db_path) as conn:
        _create_tables(conn)
        cursor = conn.execute("DELETE FROM backups WHERE id = ?", (str(backup_id),))
        conn.commit()
        return cursor.rowcount > 0

"""Cron schedule polling loop for the panel.

The loop is the only writer of a schedule's ``last_run``/``next_run``. Each
tick re-reads active schedules from SQLite, asks the due-calculator about
every one of them and hands due schedules to the task executor, which runs
them on their own threads.
"""

import threading
from datetime import datetime

from gamepanel.core import state_db
from gamepanel.core.cron_schedule import evaluate_due, is_reboot_expression


def _now(ctx):
    return datetime.now(ctx.DISPLAY_TZ)


def scheduler_tick(ctx, now=None):
    """Evaluate every active schedule once; return ids of schedules fired."""
    now = now or _now(ctx)
    fired = []
    for schedule in state_db.list_active_schedules(ctx.STATE_DB_PATH):
        schedule_id = schedule.get("id")
        try:
            if is_reboot_expression(schedule["cron"]):
                continue
            decision = evaluate_due(
                schedule["cron"],
                schedule.get("last_run"),
                now,
                window_seconds=ctx.SCHEDULER_DUE_WINDOW_SECONDS,
                dedupe_seconds=ctx.SCHEDULER_DEDUPE_SECONDS,
            )
            if not decision.due:
                continue
            ctx.log_panel_log(
                "schedule-run",
                command=f"schedule={schedule.get('name')} id={schedule_id} fire_at={decision.previous.isoformat()}",
            )
            ctx.start_schedule_run(schedule)
            state_db.update_run_times(ctx.STATE_DB_PATH, schedule_id, decision.previous, decision.next)
            fired.append(schedule_id)
        except Exception as exc:
            ctx.log_panel_exception(f"scheduler schedule={schedule_id}", exc)
    return fired


def run_reboot_schedules(ctx, now=None):
    """Fire every active ``@reboot`` schedule once for this process start."""
    now = now or _now(ctx)
    fired = []
    for schedule in state_db.list_active_schedules(ctx.STATE_DB_PATH):
        if not is_reboot_expression(schedule.get("cron")):
            continue
        schedule_id = schedule.get("id")
        try:
            ctx.log_panel_log("schedule-run", command=f"schedule={schedule.get('name')} id={schedule_id} trigger=reboot")
            ctx.start_schedule_run(schedule)
            state_db.update_run_times(ctx.STATE_DB_PATH, schedule_id, now, None)
            fired.append(schedule_id)
        except Exception as exc:
            ctx.log_panel_exception(f"scheduler reboot schedule={schedule_id}", exc)
    return fired


def scheduler_loop(ctx):
    """Run reboot schedules, then tick every interval until stopped."""
    scheduler = ctx.scheduler_state
    try:
        run_reboot_schedules(ctx)
    except Exception as exc:
        ctx.log_panel_exception("scheduler reboot", exc)
    while not scheduler.stop_event.wait(ctx.SCHEDULER_INTERVAL_SECONDS):
        try:
            scheduler_tick(ctx)
        except Exception as exc:
            ctx.log_panel_exception("scheduler tick", exc)


def start_scheduler_once(ctx):
    """Start the scheduler daemon thread once per process."""
    scheduler = ctx.scheduler_state
    with scheduler.start_lock:
        if scheduler.started:
            return False
        scheduler.stop_event.clear()
        thread = threading.Thread(target=scheduler_loop, args=(ctx,), daemon=True, name="panel-scheduler")
        thread.start()
        scheduler.thread = thread
        scheduler.started = True
    ctx.log_panel_log("scheduler-start", command=f"interval={ctx.SCHEDULER_INTERVAL_SECONDS}s")
    return True


def stop_scheduler(ctx, timeout=5.0):
    """Signal the loop to exit and wait briefly for its thread."""
    scheduler = ctx.scheduler_state
    with scheduler.start_lock:
        if not scheduler.started:
            return False
        scheduler.stop_event.set()
        thread = scheduler.thread
        scheduler.started = False
        scheduler.thread = None
    if thread is not None:
        thread.join(timeout=timeout)
    return True

"""Sequential execution of one schedule's task list."""

import threading
import time

from gamepanel.services.control_plane import INTERNAL_CALLER, POWER_ACTIONS, run_server_action

TASK_ACTIONS = ("command", "power", "backup")


class TaskDispatchError(RuntimeError):
    """Raised when one scheduled task could not be applied."""


def ordered_tasks(tasks):
    """Sort tasks by ``sequence``; equal sequences keep their stored order."""
    indexed = list(enumerate(tasks or []))
    indexed.sort(key=lambda pair: (int(pair[1].get("sequence") or 0), pair[0]))
    return [task for _, task in indexed]


def dispatch_task(ctx, task):
    """Apply one task through the internal control surface."""
    action = str(task.get("action") or "").strip().lower()
    payload = str(task.get("payload") or "")
    if action == "command":
        result = run_server_action(ctx, "command", payload, caller=INTERNAL_CALLER)
    elif action == "power":
        verb = payload.strip().lower()
        if verb not in POWER_ACTIONS:
            raise TaskDispatchError(f"unknown power action {payload!r}")
        result = run_server_action(ctx, verb, caller=INTERNAL_CALLER)
    elif action == "backup":
        result = ctx.create_backup(trigger="schedule")
    else:
        raise TaskDispatchError(f"unknown task action {task.get('action')!r}")
    if not result.get("ok"):
        raise TaskDispatchError(result.get("message") or result.get("error") or "task rejected")
    return result


def execute_schedule_tasks(ctx, schedule):
    """Run every task of ``schedule`` in order, honoring per-task delays.

    A failing task is logged and the sequence continues. Returns a list of
    ``(task_id, ok)`` pairs in execution order.
    """
    schedule_name = schedule.get("name") or schedule.get("id")
    outcomes = []
    for task in ordered_tasks(schedule.get("tasks")):
        delay = max(0, int(task.get("delay") or 0))
        if delay > 0:
            time.sleep(delay)
        ctx.log_panel_log(
            "schedule-task",
            command=f"schedule={schedule_name} action={task.get('action')} sequence={task.get('sequence')}",
        )
        try:
            dispatch_task(ctx, task)
        except Exception as exc:
            ctx.log_panel_exception(f"schedule_task schedule={schedule_name} task={task.get('id')}", exc)
            outcomes.append((task.get("id"), False))
            continue
        outcomes.append((task.get("id"), True))
    return outcomes


def _run_schedule_guarded(ctx, schedule):
    try:
        execute_schedule_tasks(ctx, schedule)
    except Exception as exc:
        ctx.log_panel_exception(f"schedule_run schedule={schedule.get('id')}", exc)


def start_schedule_run(ctx, schedule):
    """Run one schedule's tasks on their own daemon thread and return it."""
    worker = threading.Thread(
        target=_run_schedule_guarded,
        args=(ctx, schedule),
        daemon=True,
        name=f"schedule-run-{schedule.get('id')}",
    )
    worker.start()
    return worker

"""Schedule and schedule-task route registration."""
from flask import request

from gamepanel.core import state_db
from gamepanel.core.cron_schedule import is_valid_expression, normalize_expression
from gamepanel.core.response_helpers import (
    access_denied_response,
    error_response,
    not_found_response,
    ok_response,
)
from gamepanel.services.control_plane import POWER_ACTIONS, caller_has_permission
from gamepanel.services.task_executor import TASK_ACTIONS

SCHEDULES_PERMISSION = "schedules"


def _iso(value):
    return value.isoformat() if value is not None else None


def serialize_schedule(schedule):
    """Return a JSON-safe copy of one schedule row."""
    payload = dict(schedule)
    payload["last_run"] = _iso(schedule.get("last_run"))
    payload["next_run"] = _iso(schedule.get("next_run"))
    payload["tasks"] = [dict(task) for task in schedule.get("tasks", [])]
    return payload


def _parse_delay(raw):
    try:
        delay = int(str(raw if raw is not None else 0).strip() or 0)
    except (TypeError, ValueError):
        return None
    return delay if delay >= 0 else None


_ACTIVE_SPELLINGS = {
    "1": True, "true": True, "yes": True, "on": True,
    "0": False, "false": False, "no": False, "off": False,
}


def _parse_active(raw):
    """Return ``True``/``False`` for a JSON boolean or a yes/no spelling, else ``None``."""
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, str)):
        return _ACTIVE_SPELLINGS.get(str(raw).strip().lower())
    return None


def register_schedule_routes(app, state):
    """Register schedule CRUD routes backed by the SQLite state store."""

    def allowed():
        return caller_has_permission(state["get_request_caller"](), SCHEDULES_PERMISSION)

    # Route: /api/schedules
    @app.route("/api/schedules", methods=["GET"])
    def list_schedules():
        if not allowed():
            return access_denied_response()
        schedules = state_db.list_schedules(state["STATE_DB_PATH"])
        return ok_response({"schedules": [serialize_schedule(item) for item in schedules]})

    @app.route("/api/schedules", methods=["POST"])
    def create_schedule():
        """Create an active schedule from ``{name, cron}``."""
        if not allowed():
            return access_denied_response()
        body = request.get_json(silent=True) or {}
        name = str(body.get("name") or "").strip()
        cron = normalize_expression(body.get("cron"))
        if not name:
            return error_response("name_required", "Schedule name is required.", 400)
        if not is_valid_expression(cron):
            return error_response("invalid_cron", f"Invalid cron expression: {cron!r}", 400)
        schedule = state_db.create_schedule(state["STATE_DB_PATH"], name=name, cron=cron)
        state["log_panel_action"]("schedule-create", command=f"{name} cron={cron}")
        return ok_response({"schedule": serialize_schedule(schedule)})

    # Route: /api/schedules/<schedule_id>
    @app.route("/api/schedules/<schedule_id>", methods=["PATCH"])
    def update_schedule(schedule_id):
        """Edit name, cron or active flag."""
        if not allowed():
            return access_denied_response()
        body = request.get_json(silent=True) or {}
        cron = body.get("cron")
        if cron is not None:
            cron = normalize_expression(cron)
            if not is_valid_expression(cron):
                return error_response("invalid_cron", f"Invalid cron expression: {cron!r}", 400)
        raw_active = body.get("is_active", body.get("isActive"))
        is_active = None
        if raw_active is not None:
            is_active = _parse_active(raw_active)
            if is_active is None:
                return error_response("invalid_active", "is_active must be true or false.", 400)
        schedule = state_db.update_schedule(
            state["STATE_DB_PATH"],
            schedule_id,
            name=body.get("name"),
            cron=cron,
            is_active=is_active,
        )
        if schedule is None:
            return not_found_response("Schedule not found.")
        state["log_panel_action"]("schedule-update", command=schedule_id)
        return ok_response({"schedule": serialize_schedule(schedule)})

    @app.route("/api/schedules/<schedule_id>", methods=["DELETE"])
    def delete_schedule(schedule_id):
        if not allowed():
            return access_denied_response()
        if not state_db.delete_schedule(state["STATE_DB_PATH"], schedule_id):
            return not_found_response("Schedule not found.")
        state["log_panel_action"]("schedule-delete", command=schedule_id)
        return ok_response({"success": True})

    # Route: /api/schedules/<schedule_id>/tasks
    @app.route("/api/schedules/<schedule_id>/tasks", methods=["POST"])
    def add_schedule_task(schedule_id):
        """Append ``{action, payload, delay}`` to a schedule's task list."""
        if not allowed():
            return access_denied_response()
        body = request.get_json(silent=True) or {}
        action = str(body.get("action") or "").strip().lower()
        payload = str(body.get("payload") or "")
        if action not in TASK_ACTIONS:
            return error_response("invalid_action", f"Invalid task action: {action!r}", 400)
        if action == "power" and payload.strip().lower() not in POWER_ACTIONS:
            return error_response("invalid_payload", "Power tasks need start, stop or kill.", 400)
        if action == "backup":
            payload = ""
        delay = _parse_delay(body.get("delay"))
        if delay is None:
            return error_response("invalid_delay", "Delay must be a non-negative number of seconds.", 400)
        task = state_db.add_schedule_task(
            state["STATE_DB_PATH"],
            schedule_id,
            action=action,
            payload=payload.strip().lower() if action == "power" else payload,
            delay=delay,
        )
        if task is None:
            return not_found_response("Schedule not found.")
        state["log_panel_action"]("schedule-task-add", command=f"{schedule_id} {action} delay={delay}")
        return ok_response({"task": task})

    # Route: /api/schedules/tasks/<task_id>
    @app.route("/api/schedules/tasks/<task_id>", methods=["DELETE"])
    def delete_schedule_task(task_id):
        if not allowed():
            return access_denied_response()
        if not state_db.delete_schedule_task(state["STATE_DB_PATH"], task_id):
            return not_found_response("Task not found.")
        state["log_panel_action"]("schedule-task-delete", command=task_id)
        return ok_response({"success": True})

"""Server control and backup route registration."""
from pathlib import Path

from flask import request, send_file

from gamepanel.core import state_db
from gamepanel.core.response_helpers import (
    access_denied_response,
    error_response,
    not_found_response,
    ok_response,
    unauthorized_response,
)
from gamepanel.services.control_plane import caller_has_permission, run_server_action

_ACTION_ERROR_STATUS = {
    "invalid_action": 400,
    "command_required": 400,
    "access_denied": 403,
}
_BACKUP_ERROR_STATUS = {
    "backup_running": 409,
    "server_root_missing": 404,
}


def register_server_routes(app, state):
    """Register status, power/command and backup routes."""

    # Route: /api/server
    @app.route("/api/server", methods=["GET"])
    def server_status():
        """Return running flag and console snapshot for signed-in users."""
        if state["get_request_caller"]() is None:
            return unauthorized_response()
        return ok_response(state["supervisor"].get_status())

    @app.route("/api/server", methods=["POST"])
    def server_action():
        """Apply start/stop/kill/command for the calling user."""
        body = request.get_json(silent=True) or {}
        action = str(body.get("action") or "").strip().lower()
        command = body.get("command")
        caller = state["get_request_caller"]()
        result = run_server_action(state, action, command, caller=caller)
        audit_name = f"server-{action or 'unknown'}"
        if not result["ok"]:
            state["log_panel_action"](audit_name, command=command, rejection_message=result["message"])
            return error_response(result["error"], result["message"], _ACTION_ERROR_STATUS.get(result["error"], 400))
        state["log_panel_action"](audit_name, command=command if action == "command" else None)
        return ok_response({"message": result["message"]})

    # Route: /api/server/backups
    @app.route("/api/server/backups", methods=["GET"])
    def list_backups():
        """List recorded backup archives."""
        if not caller_has_permission(state["get_request_caller"](), "backups"):
            return access_denied_response()
        return ok_response({"backups": state["list_backups"]()})

    @app.route("/api/server/backups", methods=["POST"])
    def create_backup():
        """Create a backup archive now."""
        if not caller_has_permission(state["get_request_caller"](), "backups"):
            state["log_panel_action"]("backup", rejection_message="Access Denied")
            return access_denied_response()
        result = state["create_backup"](trigger="manual")
        if not result["ok"]:
            state["log_panel_action"]("backup", rejection_message=result["message"])
            return error_response(result["error"], result["message"], _BACKUP_ERROR_STATUS.get(result["error"], 500))
        state["log_panel_action"]("backup", command=result["backup"]["name"])
        return ok_response({"backup": result["backup"]})

    @app.route("/api/server/backups", methods=["DELETE"])
    def delete_backup():
        """Delete one backup archive by id."""
        if not caller_has_permission(state["get_request_caller"](), "backups"):
            return access_denied_response()
        backup_id = (request.args.get("id", "") or "").strip()
        if not backup_id:
            return error_response("id_required", "Backup id is required.", 400)
        if not state["delete_backup"](backup_id):
            return not_found_response("Backup not found.")
        state["log_panel_action"]("backup-delete", command=backup_id)
        return ok_response({"success": True})

    # Route: /api/server/backups/download
    @app.route("/api/server/backups/download", methods=["GET"])
    def download_backup():
        """Stream one recorded backup archive as an attachment."""
        if not caller_has_permission(state["get_request_caller"](), "backups"):
            return access_denied_response()
        backup_id = (request.args.get("id", "") or "").strip()
        if not backup_id:
            return error_response("id_required", "Backup id is required.", 400)
        record = state_db.get_backup(state["STATE_DB_PATH"], backup_id)
        if record is None or not Path(record["path"]).is_file():
            return not_found_response("Backup not found.")
        state["log_panel_action"]("backup-download", command=record["name"])
        return send_file(record["path"], as_attachment=True, download_name=record["name"])

"""Server control-plane operations shared by routes and the scheduler."""

from dataclasses import dataclass, field

ACTION_PERMISSIONS = {
    "start": "start",
    "stop": "stop",
    "kill": "stop",
    "command": "console",
}
POWER_ACTIONS = ("start", "stop", "kill")
ACTION_MESSAGES = {
    "start": "Server starting...",
    "stop": "Stop command sent.",
    "kill": "Server killed.",
    "command": "Command sent.",
}


@dataclass(frozen=True)
class Caller:
    """Identity attached to one control request."""
    username: str
    role: str = "user"
    permissions: frozenset = field(default_factory=frozenset)
    trusted: bool = False


# Scheduler/task executor calls go through the same surface without permission checks.
INTERNAL_CALLER = Caller(username="scheduler", role="system", trusted=True)


def caller_from_session(session):
    """Build a ``Caller`` from a Flask session, or ``None`` when signed out."""
    username = str(session.get("username") or "").strip()
    if not username:
        return None
    raw_permissions = session.get("permissions") or ()
    if isinstance(raw_permissions, str):
        raw_permissions = [raw_permissions]
    permissions = frozenset(str(item).strip() for item in raw_permissions if str(item).strip())
    role = str(session.get("role") or "user").strip() or "user"
    return Caller(username=username, role=role, permissions=permissions)


def caller_has_permission(caller, permission):
    """Trusted internal callers and admins pass; users need the named permission."""
    if caller is None:
        return False
    if caller.trusted or caller.role == "admin":
        return True
    return permission in caller.permissions


def get_server_status(ctx):
    return ctx.supervisor.get_status()


def run_server_action(ctx, action, command=None, *, caller):
    """Apply one start/stop/kill/command action to the managed server.

    Returns a result dict; ``ok`` is ``False`` with an ``error`` code for
    unknown actions, missing permissions or an empty command.
    """
    normalized = str(action or "").strip().lower()
    permission = ACTION_PERMISSIONS.get(normalized)
    if permission is None:
        return {"ok": False, "error": "invalid_action", "message": f"Invalid action: {action!r}"}
    if not caller_has_permission(caller, permission):
        return {"ok": False, "error": "access_denied", "message": "Access Denied"}

    supervisor = ctx.supervisor
    if normalized == "start":
        applied = supervisor.start()
    elif normalized == "stop":
        applied = supervisor.stop()
    elif normalized == "kill":
        applied = supervisor.kill()
    else:
        text = str(command or "")
        if not text.strip():
            return {"ok": False, "error": "command_required", "message": "Command is required."}
        applied = supervisor.send_command(text)
    return {"ok": True, "message": ACTION_MESSAGES[normalized], "applied": bool(applied)}

"""Flask lifecycle hook and startup runner composition helpers."""
import threading

from flask import has_request_context, request
from werkzeug.exceptions import HTTPException

from gamepanel.core.response_helpers import internal_error_response


def install_flask_hooks(
    app,
    *,
    ensure_background_started,
    log_panel_exception,
):
    """Install request/error hooks using explicit runtime callbacks."""

    @app.before_request
    def _ensure_background_before_request():
        # Background services must also come up under WSGI launch.
        ensure_background_started()

    @app.errorhandler(Exception)
    def _unhandled_exception_handler(exc):
        if isinstance(exc, HTTPException):
            return exc
        path = request.path if has_request_context() else "unknown-path"
        log_panel_exception(f"unhandled_exception path={path}", exc)
        return internal_error_response()


def build_background_starter(*, initialize_state_db, start_scheduler_once, scheduler_enabled, log_panel_exception):
    """Return an idempotent callable that initializes storage and the scheduler."""
    started = {"done": False}
    lock = threading.Lock()

    def ensure_background_started():
        if started["done"]:
            return
        with lock:
            if started["done"]:
                return
            started["done"] = True
            try:
                initialize_state_db()
                if scheduler_enabled:
                    start_scheduler_once()
            except Exception as exc:
                log_panel_exception("ensure_background_started", exc)

    return ensure_background_started

"""Web panel for controlling one managed game server process.

This app provides:
- Server controls (start/stop/kill/console commands)
- A bounded live console buffer
- Backups of the server directory
- Cron-driven schedules of commands, power actions and backups
"""

from flask import Flask, session, has_request_context
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from gamepanel.core import state_db
from gamepanel.core.action_logging import build_loggers
from gamepanel.core.panel_config import PanelConfig, apply_default_flask_config, resolve_secret_key
from gamepanel.core.startup_config import default_launch_args
from gamepanel.routes.panel_routes import register_routes
from gamepanel.services import backup_service
from gamepanel.services import bootstrap as bootstrap_service
from gamepanel.services import scheduler_loop as scheduler_loop_service
from gamepanel.services import task_executor as task_executor_service
from gamepanel.services.app_lifecycle import build_background_starter, install_flask_hooks
from gamepanel.services.control_plane import caller_from_session
from gamepanel.services.process_supervisor import ProcessSupervisor, get_supervisor
from gamepanel.state import AppState, BackupState, SchedulerState

APP_DIR = Path(__file__).resolve().parent.parent
PANEL_CONF_PATH = APP_DIR / "panel.env"


def _resolve_display_tz(name):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def build_state(cfg, app_dir=APP_DIR):
    """Resolve settings and services into the strict runtime ``AppState``."""
    SERVER_ROOT = cfg.get_path("SERVER_ROOT", app_dir / "server")
    JAVA_PATH = cfg.get_str("JAVA_PATH", "java")
    SERVER_JAR = cfg.get_str("SERVER_JAR", "server.jar")
    DATA_DIR = cfg.get_path("DATA_DIR", app_dir / "data")
    BACKUP_DIR = cfg.get_path("BACKUP_DIR", app_dir / "backups")
    STATE_DB_PATH = cfg.get_path("STATE_DB_PATH", DATA_DIR / "panel.sqlite3")
    PANEL_LOG_DIR = cfg.get_path("PANEL_LOG_DIR", app_dir / "logs")
    PANEL_ACTION_LOG_FILE = PANEL_LOG_DIR / "panel-actions.log"
    PANEL_LOG_FILE = PANEL_LOG_DIR / "panel.log"
    DISPLAY_TZ = _resolve_display_tz(cfg.get_str("DISPLAY_TZ", "UTC"))
    LOG_BUFFER_LINES = cfg.get_int("LOG_BUFFER_LINES", 100, minimum=1)

    # Scheduler timing; the due window stays wider than the poll interval.
    SCHEDULER_ENABLED = cfg.get_bool("SCHEDULER_ENABLED", True)
    SCHEDULER_INTERVAL_SECONDS = cfg.get_float("SCHEDULER_INTERVAL_SECONDS", 60.0, minimum=1.0)
    SCHEDULER_DUE_WINDOW_SECONDS = cfg.get_float(
        "SCHEDULER_DUE_WINDOW_SECONDS", 65.0, minimum=SCHEDULER_INTERVAL_SECONDS
    )
    SCHEDULER_DEDUPE_SECONDS = cfg.get_float("SCHEDULER_DEDUPE_SECONDS", 10.0, minimum=0.0)

    log_panel_action, log_panel_log, log_panel_exception = build_loggers(
        DISPLAY_TZ, PANEL_LOG_DIR, PANEL_ACTION_LOG_FILE, PANEL_LOG_FILE
    )

    supervisor = get_supervisor(
        str(SERVER_ROOT.resolve()),
        lambda: ProcessSupervisor(
            SERVER_ROOT,
            JAVA_PATH,
            default_args=default_launch_args(SERVER_JAR),
            log_capacity=LOG_BUFFER_LINES,
            log_panel_log=log_panel_log,
            log_exception=log_panel_exception,
        ),
    )
    backup_state = BackupState()
    scheduler_state = SchedulerState()

    def create_backup(trigger="manual"):
        return backup_service.create_backup(state, trigger)

    def list_backups():
        return backup_service.list_backups(state)

    def delete_backup(backup_id):
        return backup_service.delete_backup(state, backup_id)

    def start_schedule_run(schedule):
        return task_executor_service.start_schedule_run(state, schedule)

    def get_request_caller():
        if not has_request_context():
            return None
        return caller_from_session(session)

    state = AppState.from_namespace(locals())
    return state


def create_panel_app(state, cfg):
    """Build the Flask app around an already-wired ``AppState``."""
    app = Flask(__name__)
    app.config["SECRET_KEY"] = resolve_secret_key(cfg.get_str, "PANEL_SECRET_KEY", "FLASK_SECRET_KEY")
    apply_default_flask_config(app)

    ensure_background_started = build_background_starter(
        initialize_state_db=lambda: state_db.initialize_state_db(
            db_path=state.STATE_DB_PATH,
            log_exception=state.log_panel_exception,
        ),
        start_scheduler_once=lambda: scheduler_loop_service.start_scheduler_once(state),
        scheduler_enabled=state.SCHEDULER_ENABLED,
        log_panel_exception=state.log_panel_exception,
    )
    app.config["PANEL_ENSURE_BACKGROUND"] = ensure_background_started
    install_flask_hooks(
        app,
        ensure_background_started=ensure_background_started,
        log_panel_exception=state.log_panel_exception,
    )
    register_routes(app, state)
    return app


def log_panel_boot_diagnostics(state):
    """Log boot-time file/config detection snapshot."""
    try:
        details = (
            f"server_root={state.SERVER_ROOT} exists={Path(state.SERVER_ROOT).is_dir()}; "
            f"java={state.JAVA_PATH}; jar={state.SERVER_JAR}; "
            f"backup_dir={state.BACKUP_DIR}; state_db={state.STATE_DB_PATH}; "
            f"scheduler_enabled={state.SCHEDULER_ENABLED} interval={state.SCHEDULER_INTERVAL_SECONDS}s"
        )
        state.log_panel_log("boot", command=details)
    except Exception as exc:
        state.log_panel_exception("boot_diagnostics", exc)


_CFG = PanelConfig(PANEL_CONF_PATH, APP_DIR)
STATE = build_state(_CFG)
app = create_panel_app(STATE, _CFG)


def run_server():
    """Start background services before serving HTTP requests."""
    bootstrap_service.run_server(
        app,
        _CFG.get_str,
        _CFG.get_int,
        STATE.log_panel_log,
        STATE.log_panel_exception,
        boot_steps=(
            ("boot_diagnostics", lambda: log_panel_boot_diagnostics(STATE)),
            ("background_services", app.config["PANEL_ENSURE_BACKGROUND"]),
        ),
    )


if __name__ == "__main__":
    run_server()

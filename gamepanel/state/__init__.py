"""Runtime state shared by panel routes, the scheduler and task workers."""
import threading
from dataclasses import dataclass, field
from collections.abc import Iterator, MutableMapping
from typing import Any


@dataclass
class BackupState:
    """Single-flight guard and last outcome for backup runs."""
    lock: Any = field(default_factory=threading.Lock)
    run_lock: Any = field(default_factory=threading.Lock)
    last_error: str = ""


@dataclass
class SchedulerState:
    """Scheduler thread lifecycle for one app process."""
    start_lock: Any = field(default_factory=threading.Lock)
    stop_event: Any = field(default_factory=threading.Event)
    started: bool = False
    thread: Any = None


# Resolved settings and long-lived service objects.
_STATE_CORE_KEYS = (
    "BACKUP_DIR",
    "DISPLAY_TZ",
    "JAVA_PATH",
    "LOG_BUFFER_LINES",
    "PANEL_ACTION_LOG_FILE",
    "PANEL_LOG_DIR",
    "PANEL_LOG_FILE",
    "SCHEDULER_DEDUPE_SECONDS",
    "SCHEDULER_DUE_WINDOW_SECONDS",
    "SCHEDULER_ENABLED",
    "SCHEDULER_INTERVAL_SECONDS",
    "SERVER_JAR",
    "SERVER_ROOT",
    "STATE_DB_PATH",
    "backup_state",
    "scheduler_state",
    "supervisor",
)

# Callables closed over the state itself; routes and workers call these.
_STATE_BINDING_KEYS = (
    "create_backup",
    "delete_backup",
    "get_request_caller",
    "list_backups",
    "log_panel_action",
    "log_panel_exception",
    "log_panel_log",
    "start_schedule_run",
)

REQUIRED_STATE_KEYS = _STATE_CORE_KEYS + _STATE_BINDING_KEYS
REQUIRED_STATE_KEY_SET = frozenset(REQUIRED_STATE_KEYS)


class AppState(MutableMapping[str, Any]):
    """Fixed-key mapping; members read as ``state["X"]`` or ``state.X``.

    Unknown keys are rejected on write so a typo cannot silently add state.
    """

    __slots__ = ("_data",)

    def __init__(self, data: dict[str, Any]):
        missing = REQUIRED_STATE_KEY_SET.difference(data)
        if missing:
            raise KeyError(f"AppState is missing: {', '.join(sorted(missing))}")
        object.__setattr__(self, "_data", {key: data[key] for key in REQUIRED_STATE_KEYS})

    @classmethod
    def from_namespace(cls, namespace: dict[str, Any]) -> "AppState":
        """Pick the known members out of e.g. ``locals()``."""
        return cls({key: namespace[key] for key in REQUIRED_STATE_KEYS if key in namespace})

    def _known(self, key: str) -> str:
        if key not in REQUIRED_STATE_KEY_SET:
            raise KeyError(key)
        return key

    def __getitem__(self, key: str) -> Any:
        key = self._known(key)
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        key = self._known(key)
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        raise TypeError("AppState members cannot be removed")

    def __iter__(self) -> Iterator[str]:
        return iter(REQUIRED_STATE_KEYS)

    def __len__(self) -> int:
        return len(REQUIRED_STATE_KEYS)

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name: str, value: Any) -> None:
        try:
            self[name] = value
        except KeyError:
            raise AttributeError(name) from None

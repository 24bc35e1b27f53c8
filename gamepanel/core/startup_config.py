"""Launch argument helpers for the managed Java server process."""

import re
from pathlib import Path

DEFAULT_SERVER_JAR = "server.jar"
STARTUP_SCRIPT_NAMES = ("start.bat", "start.sh")

_MEMORY_FLAG_PATTERNS = (
    ("-Xmx", re.compile(r"-Xmx(\d+[GMKgmk])")),
    ("-Xms", re.compile(r"-Xms(\d+[GMKgmk])")),
)


def default_launch_args(server_jar=DEFAULT_SERVER_JAR):
    """Return the compiled-in JVM arguments used when no script overrides them."""
    return ["-Xms4G", "-Xmx4G", "-jar", str(server_jar), "--nogui"]


def find_startup_script(server_root):
    """Return the first startup script present in ``server_root``, if any."""
    root = Path(server_root)
    for name in STARTUP_SCRIPT_NAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def read_memory_flags(server_root):
    """Parse ``-Xmx``/``-Xms`` sizes out of the server's startup script.

    Returns a ``{"-Xmx": "6G", ...}`` mapping, empty when no script exists
    or nothing matched. Read errors propagate to the caller.
    """
    script = find_startup_script(server_root)
    if script is None:
        return {}
    content = script.read_text(encoding="utf-8", errors="replace")
    flags = {}
    for prefix, pattern in _MEMORY_FLAG_PATTERNS:
        match = pattern.search(content)
        if match:
            flags[prefix] = match.group(1).upper()
    return flags


def apply_memory_flags(args, flags):
    """Return a copy of ``args`` with memory flags replaced or prepended."""
    result = list(args)
    for prefix, size in flags.items():
        value = f"{prefix}{size}"
        idx = next((i for i, arg in enumerate(result) if arg.startswith(prefix)), -1)
        if idx != -1:
            result[idx] = value
        else:
            result.insert(0, value)
    return result


def resolve_launch_args(server_root, default_args, log_exception=None):
    """Return launch args for ``server_root``; any parse failure keeps defaults."""
    try:
        flags = read_memory_flags(server_root)
    except (OSError, ValueError) as exc:
        if callable(log_exception):
            log_exception("resolve_launch_args", exc)
        return list(default_args)
    return apply_memory_flags(default_args, flags)

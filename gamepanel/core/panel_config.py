"""``panel.env`` settings with typed getters.

The file holds ``KEY=VALUE`` lines (``#`` comments, optional quotes). Any
key can be overridden from the environment as ``GAMEPANEL_<KEY>``, which is
how container deployments configure the panel without shipping a file.
"""

import os
import secrets
from pathlib import Path

ENV_PREFIX = "GAMEPANEL_"
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def parse_env_lines(lines):
    """Return ``{key: value}`` for the assignment lines in ``lines``."""
    values = {}
    for raw in lines:
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        if not key:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        values[key] = value
    return values


class PanelConfig:
    """Layered settings: ``GAMEPANEL_*`` environment first, then ``panel.env``."""

    def __init__(self, config_path, base_dir, environ=None):
        self.config_path = Path(config_path)
        self.base_dir = Path(base_dir)
        self.environ = os.environ if environ is None else environ
        try:
            self.values = parse_env_lines(self.config_path.read_text(encoding="utf-8").splitlines())
        except OSError:
            self.values = {}

    def _raw(self, name):
        """Return the stripped setting, or ``None`` when unset or blank."""
        for value in (self.environ.get(f"{ENV_PREFIX}{name}"), self.values.get(name)):
            value = str(value or "").strip()
            if value:
                return value
        return None

    def _number(self, name, default, parse, minimum):
        raw = self._raw(name)
        if raw is None:
            return default
        try:
            parsed = parse(raw)
        except ValueError:
            return default
        if minimum is not None and parsed < minimum:
            return minimum
        return parsed

    def get_str(self, name, default):
        raw = self._raw(name)
        return default if raw is None else raw

    def get_int(self, name, default, minimum=None):
        """Integer setting; unparsable values keep ``default``, small ones clamp to ``minimum``."""
        return self._number(name, default, int, minimum)

    def get_float(self, name, default, minimum=None):
        return self._number(name, default, float, minimum)

    def get_bool(self, name, default):
        """Yes/no flag; unknown spellings keep ``default``."""
        raw = (self._raw(name) or "").lower()
        if raw in _TRUE_VALUES:
            return True
        if raw in _FALSE_VALUES:
            return False
        return default

    def get_path(self, name, default):
        """Path setting; relative values resolve against ``base_dir``."""
        raw = self._raw(name)
        if raw is None:
            return Path(default)
        candidate = Path(raw).expanduser()
        return candidate if candidate.is_absolute() else self.base_dir / candidate


def resolve_secret_key(cfg_get_str, *env_names):
    """Return the first non-blank of the named env vars, ``PANEL_SECRET_KEY``, or a random key."""
    for name in env_names:
        value = (os.environ.get(name) or "").strip()
        if value:
            return value
    return (cfg_get_str("PANEL_SECRET_KEY", "") or "").strip() or secrets.token_hex(32)


def apply_default_flask_config(app):
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.json.sort_keys = False

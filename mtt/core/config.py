import json
import os
from dataclasses import dataclass
from mtt.common.logger import log
from mtt.common.setup import PATHS

#region === Defaults ===

# Default values for every tunable setting. settings.json may override any of them.
_SETTINGS_DEFAULTS = {
    "max_payload_bytes": 1048576,
    "lock_timeout_seconds": 5.0,
    "max_input_length": 100,
    "host": "127.0.0.1",
    "port": 13331,
    "snapshot_keep_history": True,
}

# Environment overrides, applied after settings.json.
_ENV_OVERRIDES = {
    "MTT_HOST": ("host", str),
    "MTT_PORT": ("port", int),
}

#endregion === Defaults ===

@dataclass(frozen=True)
class Settings:
    max_payload_bytes: int = _SETTINGS_DEFAULTS["max_payload_bytes"]
    lock_timeout_seconds: float = _SETTINGS_DEFAULTS["lock_timeout_seconds"]
    max_input_length: int = _SETTINGS_DEFAULTS["max_input_length"]
    host: str = _SETTINGS_DEFAULTS["host"]
    port: int = _SETTINGS_DEFAULTS["port"]
    snapshot_keep_history: bool = _SETTINGS_DEFAULTS["snapshot_keep_history"]


# Loads settings from settings.json (if any), filling defaults for missing or mistyped keys, then applies
# environment overrides. Never raises: a broken settings file just means defaults.
def load_settings(settings_path=None, environ=None):
    settings_path = settings_path or PATHS.settings_file
    environ = os.environ if environ is None else environ
    values = dict(_SETTINGS_DEFAULTS)

    if settings_path.exists():
        try:
            with open(settings_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, OSError):
            log.warning(f"Could not read settings from '{settings_path}', using defaults.", exc_info=True)
            raw = {}
        if not isinstance(raw, dict):
            log.warning(f"Settings file '{settings_path}' is not an object, using defaults.")
            raw = {}

        defaulted_values = set()
        for key, default in _SETTINGS_DEFAULTS.items():
            if key not in raw:
                continue
            value = raw[key]
            # bool is an int subclass, so check it explicitly
            if isinstance(default, bool) != isinstance(value, bool) or not isinstance(value, type(default)):
                if isinstance(default, float) and isinstance(value, int) and not isinstance(value, bool):
                    value = float(value)
                else:
                    defaulted_values.add(key)
                    continue
            values[key] = value
        unknown = set(raw) - set(_SETTINGS_DEFAULTS)
        if unknown:
            log.warning(f"Ignoring unknown settings: {', '.join(sorted(unknown))}")
        if defaulted_values:
            log.warning(f"Settings with invalid values were defaulted: {', '.join(sorted(defaulted_values))}")

    for env_key, (key, cast) in _ENV_OVERRIDES.items():
        if environ.get(env_key):
            try:
                values[key] = cast(environ[env_key])
            except ValueError:
                log.warning(f"Ignoring invalid value for {env_key}: {environ[env_key]!r}")

    return Settings(**values)

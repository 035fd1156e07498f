"""
Config loader for mindgarden.

config.yaml is read once (after .env) and cached. String values may refer
to the environment as ${NAME} or ${NAME:-fallback}.

runtime_config.yaml holds the few settings that can change while the
server runs. Only the keys in RUNTIME_OVERRIDES are honoured; each maps to
the config.yaml value it shadows and is coerced to that value's type. The
file is re-read when its mtime changes.
"""

import logging
import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"
_RUNTIME_CONFIG_PATH = Path(__file__).parent.parent / "runtime_config.yaml"

# runtime key -> (config section, config key, type)
RUNTIME_OVERRIDES = {
    "log_level": ("logging", "level", str),
    "generation_history_turns": ("generation", "history_turns", int),
    "assessment_garden_prompt_delay": ("assessment", "garden_prompt_delay", float),
}

_ENV_REF = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")

_config: dict | None = None

_runtime_config: dict = {}
_runtime_mtime: float = 0.0


def _expand(obj):
    """Substitute environment references in every string of a loaded YAML tree."""
    if isinstance(obj, dict):
        return {k: _expand(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand(v) for v in obj]
    if isinstance(obj, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1)) or (m.group(2) or ""), obj)
    return obj


def load_config(path: Path | None = None) -> dict:
    """Load config.yaml (or `path`) and cache it."""
    global _config
    if _config is not None and path is None:
        return _config

    config_path = path or _CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path) as f:
        _config = _expand(yaml.safe_load(f) or {})
    return _config


def get_config() -> dict:
    return _config if _config is not None else load_config()


def _coerce(key: str, value):
    """Cast a runtime value to its declared type; ValueError/TypeError if it can't be."""
    _, _, cast = RUNTIME_OVERRIDES[key]
    if cast is int and isinstance(value, bool):
        raise TypeError(f"{key} expects an integer")
    return cast(value)


def _read_overrides(raw: dict) -> dict:
    overrides = {}
    for key, value in raw.items():
        if key not in RUNTIME_OVERRIDES:
            logger.warning("Ignoring unknown runtime key %r", key)
            continue
        try:
            overrides[key] = _coerce(key, value)
        except (TypeError, ValueError):
            logger.warning("Ignoring runtime %s=%r: wrong type", key, value)
    return overrides


def get_runtime_config() -> dict:
    """
    Current runtime overrides, already validated and typed.
    A file that fails to parse leaves the previous overrides in place.
    """
    global _runtime_config, _runtime_mtime

    try:
        mtime = _RUNTIME_CONFIG_PATH.stat().st_mtime
    except FileNotFoundError:
        return {}
    except OSError:
        return _runtime_config

    if mtime != _runtime_mtime:
        try:
            with open(_RUNTIME_CONFIG_PATH) as f:
                data = yaml.safe_load(f) or {}
            block = data.get("runtime") if isinstance(data, dict) else None
            _runtime_config = _read_overrides(block if isinstance(block, dict) else {})
            _runtime_mtime = mtime
        except (OSError, yaml.YAMLError) as e:
            logger.warning("runtime config reload failed, keeping previous: %s", e)

    return _runtime_config


def update_runtime_config(key: str, value) -> bool:
    """
    Set one override in runtime_config.yaml, keeping the others.
    Returns False for unknown keys, badly typed values or an unwritable file.
    """
    global _runtime_mtime
    if key not in RUNTIME_OVERRIDES:
        logger.error("Unknown runtime key %r (known: %s)", key, ", ".join(sorted(RUNTIME_OVERRIDES)))
        return False
    try:
        value = _coerce(key, value)
    except (TypeError, ValueError):
        logger.error("Runtime key %s cannot take %r", key, value)
        return False

    try:
        data = {}
        if _RUNTIME_CONFIG_PATH.exists():
            with open(_RUNTIME_CONFIG_PATH) as f:
                data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            data = {}
        if not isinstance(data.get("runtime"), dict):
            data["runtime"] = {}
        data["runtime"][key] = value

        with open(_RUNTIME_CONFIG_PATH, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True)
    except (OSError, yaml.YAMLError) as e:
        logger.error("Could not write %s to %s: %s", key, _RUNTIME_CONFIG_PATH, e)
        return False

    _runtime_mtime = 0.0
    return True


def runtime_override(key: str, default):
    """The runtime value for `key` if one is set, else `default`."""
    return get_runtime_config().get(key, default)


def setting(section: str, key: str, default=None):
    """section.key from config.yaml, shadowed by its runtime override if it has one."""
    for rt_key, (rt_section, rt_name, _) in RUNTIME_OVERRIDES.items():
        if (rt_section, rt_name) == (section, key):
            rt = get_runtime_config()
            if rt_key in rt:
                return rt[rt_key]
            break
    return get_config().get(section, {}).get(key, default)

import copy
import logging
import os

import yaml

from allsales.constants import CONFIG_FILE, DEFAULT_SETTINGS, ENV_OVERRIDES

# Retrieve main logger
logger = logging.getLogger("main")

_TRUE_VALUES = ("1", "true", "yes", "on")

# Cache variable
_cached_settings = None


def _coerce(raw, kind):
    if kind is bool:
        return str(raw).strip().lower() in _TRUE_VALUES
    return kind(raw)


def _merge_section(settings, section, values):
    if isinstance(values, dict) and isinstance(settings.get(section), dict):
        settings[section].update(values)
    else:
        settings[section] = values


def apply_env_overrides(settings, environ=None):
    """Overlay recognized environment variables onto a settings dict."""
    environ = os.environ if environ is None else environ
    for env_name, (section, key, kind) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            settings[section][key] = _coerce(raw, kind)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid value for {env_name}: {raw!r}")
    return settings


def load_settings(force=False, config_file=None, environ=None):
    global _cached_settings

    if _cached_settings and not force:
        return _cached_settings

    settings = copy.deepcopy(DEFAULT_SETTINGS)

    config_file = config_file or CONFIG_FILE
    if os.path.exists(config_file):
        logger.debug(f"Reading configuration file: {config_file}")
        with open(config_file, "r") as yaml_file:
            file_settings = yaml.safe_load(yaml_file) or {}
        # Deep merge with defaults to ensure new keys are present
        for section, values in file_settings.items():
            _merge_section(settings, section, values)

    apply_env_overrides(settings, environ)

    _cached_settings = settings
    return settings


def redact_settings(settings):
    """Copy of the settings safe to log or return from an API."""
    redacted = copy.deepcopy(settings)
    if redacted.get("steam", {}).get("api_key"):
        redacted["steam"]["api_key"] = "***"
    return redacted

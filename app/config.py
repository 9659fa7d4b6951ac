"""
Alpen-Webcams fetcher - Configuration loader.

Loads and validates configuration from a YAML file.
"""

from __future__ import annotations

import copy
import logging
import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from app.cameras import find_camera
from app.constants import (
    DEFAULT_ASSET_MAX_AGE_SECONDS,
    DEFAULT_ASSET_MAX_ENTRIES,
    DEFAULT_CHECK_INTERVAL_SECONDS,
    DEFAULT_LOG_DISPLAY_COUNT,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "webcam": {
        # Catalogue identifier, e.g. "wallberg"
        "camera": "",
        # Optional archive URL template override for the selected camera
        "req_url": "",
    },
    "source": {
        "request_timeout": DEFAULT_REQUEST_TIMEOUT_SECONDS,
        "verify_tls": False,
        # Archive file names use the cameras' local time
        "timezone": "Europe/Berlin",
    },
    "schedule": {
        "check_interval_seconds": DEFAULT_CHECK_INTERVAL_SECONDS,
        # Emit an ACTIVE visibility at startup so fetching begins right away
        "start_visible": True,
    },
    "assets": {
        "max_age_seconds": DEFAULT_ASSET_MAX_AGE_SECONDS,
        "max_entries": DEFAULT_ASSET_MAX_ENTRIES,
    },
    "web": {
        "enabled": True,
        "port": 8080,
        "host": "0.0.0.0",
        "log_display_count": DEFAULT_LOG_DISPLAY_COUNT,
    },
    "logging": {
        "level": "INFO",
        "file": "",
    },
}

_CONFIG_PATH_ENV = "ALPENCAMS_CONFIG"
_DEFAULT_CONFIG_PATH = "/config/config.yaml"

# Map ALPENCAMS_* env vars to config paths. Type: str, int, float or bool
_ENV_TO_CONFIG: list[tuple[str, tuple[str, ...], str | type]] = [
    ("ALPENCAMS_WEBCAM_CAMERA", ("webcam", "camera"), str),
    ("ALPENCAMS_WEBCAM_REQ_URL", ("webcam", "req_url"), str),
    ("ALPENCAMS_SOURCE_REQUEST_TIMEOUT", ("source", "request_timeout"), "float"),
    ("ALPENCAMS_SOURCE_VERIFY_TLS", ("source", "verify_tls"), bool),
    ("ALPENCAMS_SOURCE_TIMEZONE", ("source", "timezone"), str),
    (
        "ALPENCAMS_SCHEDULE_CHECK_INTERVAL_SECONDS",
        ("schedule", "check_interval_seconds"),
        int,
    ),
    ("ALPENCAMS_SCHEDULE_START_VISIBLE", ("schedule", "start_visible"), bool),
    ("ALPENCAMS_ASSETS_MAX_AGE_SECONDS", ("assets", "max_age_seconds"), int),
    ("ALPENCAMS_ASSETS_MAX_ENTRIES", ("assets", "max_entries"), int),
    ("ALPENCAMS_WEB_ENABLED", ("web", "enabled"), bool),
    ("ALPENCAMS_WEB_PORT", ("web", "port"), int),
    ("ALPENCAMS_WEB_HOST", ("web", "host"), str),
    ("ALPENCAMS_WEB_LOG_DISPLAY_COUNT", ("web", "log_display_count"), int),
    ("ALPENCAMS_LOGGING_LEVEL", ("logging", "level"), str),
    ("ALPENCAMS_LOGGING_FILE", ("logging", "file"), str),
]


def _parse_env_bool(val: str) -> bool:
    """Parse string to bool. Accepts true/false, 1/0, yes/no (case-insensitive)."""
    return val.strip().lower() in ("true", "1", "yes", "on")


def _env_overrides() -> dict:
    """Build config override dict from ALPENCAMS_* environment variables."""
    overrides: dict = {}
    for env_key, path, typ in _ENV_TO_CONFIG:
        val = os.environ.get(env_key, "").strip()
        if not val:
            continue
        try:
            if typ is str:
                parsed = val
            elif typ is int:
                parsed = int(val)
            elif typ == "float":
                parsed = float(val) if "." in val else int(val)
            elif typ is bool:
                parsed = _parse_env_bool(val)
            else:
                continue
        except (ValueError, TypeError):
            logger.warning("Invalid env %s=%r; ignoring.", env_key, val)
            continue
        target = overrides
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = parsed
    return overrides


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: str | None = None) -> dict:
    """
    Load configuration from a YAML file, falling back to defaults.

    The config file path is resolved in this order:
    1. Explicit ``config_path`` argument
    2. ``ALPENCAMS_CONFIG`` environment variable
    3. Default path ``/config/config.yaml``

    Missing keys fall back to DEFAULT_CONFIG values; ALPENCAMS_* environment
    variables override both.
    """
    path = config_path or os.environ.get(_CONFIG_PATH_ENV, _DEFAULT_CONFIG_PATH)

    config = copy.deepcopy(DEFAULT_CONFIG)

    if os.path.isfile(path):
        try:
            with open(path, "r", encoding="utf-8") as fh:
                user_config = yaml.safe_load(fh) or {}
            if not isinstance(user_config, dict):
                raise yaml.YAMLError("top level must be a mapping")
            config = _deep_merge(copy.deepcopy(DEFAULT_CONFIG), user_config)
            logger.info("Configuration loaded from %s", path)
        except yaml.YAMLError as exc:
            logger.error("Failed to parse config file %s: %s", path, exc)
        except OSError as exc:
            logger.error("Failed to read config file %s: %s", path, exc)
    else:
        logger.warning(
            "Config file not found at %s; using defaults. "
            "Set ALPENCAMS_* env vars to configure.",
            path,
        )

    env_overrides = _env_overrides()
    if env_overrides:
        config = _deep_merge(config, env_overrides)
        logger.debug("Applied config overrides from ALPENCAMS_* environment variables")

    return config


def validate_config(config: dict) -> list[str]:
    """
    Validate configuration for minimal operation.

    Returns:
        List of error messages. Empty list means config is valid.
    """
    errors: list[str] = []

    camera = (config.get("webcam", {}).get("camera") or "").strip()
    if not camera:
        errors.append("Select a webcam (webcam.camera), e.g. 'wallberg'.")
    elif find_camera(camera) is None:
        errors.append(f"Unknown webcam {camera!r}; see /api/cameras for choices.")

    source = config.get("source", {})
    tz_name = (source.get("timezone") or "").strip()
    if tz_name:
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"Unknown timezone {tz_name!r} (source.timezone).")

    timeout = source.get("request_timeout", DEFAULT_REQUEST_TIMEOUT_SECONDS)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        errors.append("Request timeout (source.request_timeout) must be positive.")

    interval = config.get("schedule", {}).get(
        "check_interval_seconds", DEFAULT_CHECK_INTERVAL_SECONDS
    )
    if not isinstance(interval, int) or interval < 1:
        errors.append(
            "Check interval (schedule.check_interval_seconds) must be at least 1."
        )

    assets = config.get("assets", {})
    max_entries = assets.get("max_entries", DEFAULT_ASSET_MAX_ENTRIES)
    if not isinstance(max_entries, int) or max_entries < 1:
        errors.append("Asset store size (assets.max_entries) must be at least 1.")
    max_age = assets.get("max_age_seconds", DEFAULT_ASSET_MAX_AGE_SECONDS)
    if not isinstance(max_age, (int, float)) or max_age <= 0:
        errors.append("Asset max age (assets.max_age_seconds) must be positive.")

    if errors:
        logger.debug("Config validation failed: %s", "; ".join(errors))
    else:
        logger.debug("Config validation passed.")
    return errors

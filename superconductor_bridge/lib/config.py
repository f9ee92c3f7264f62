"""
Shared configuration loader for the SuperConductor bridge.

Loads a single JSON config file.  Search order:
  1. $SUPERCONDUCTOR_BRIDGE_CONFIG          (explicit override)
  2. /etc/superconductor-bridge/config.json (deployed)
  3. config.json                            (CWD — handy for local dev)

Usage:
    from .config import cfg, validate_config

    connection = validate_config(cfg("superconductor", default={}))
    bridge_port = cfg("bridge", "port", default=8780)
    webhook_url = cfg("panel", "webhook_url", default="")

Example config.json:
    {
      "superconductor": {
        "host": "127.0.0.1",
        "port": "5500",
        "rundownPollIntervalSeconds": 30,
        "groupPollIntervalSeconds": 5
      },
      "bridge": {"port": 8780},
      "panel": {"webhook_url": "http://localhost:8000/superconductor"}
    }
"""

import json
import logging
import os
import re

from .errors import ConfigError

logger = logging.getLogger(__name__)

_config: dict | None = None

ENV_CONFIG_PATH = "SUPERCONDUCTOR_BRIDGE_CONFIG"

_SEARCH_PATHS = [
    "/etc/superconductor-bridge/config.json",
    "config.json",
]

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = "5500"

RUNDOWN_POLL_MIN = 10
RUNDOWN_POLL_MAX = 300
RUNDOWN_POLL_DEFAULT = 30
RUNDOWN_POLL_FALLBACK = 30

GROUP_POLL_MIN = 1
GROUP_POLL_MAX = 30
GROUP_POLL_DEFAULT = 5
# Out-of-range group intervals fall back to 10, not to the form default.
GROUP_POLL_FALLBACK = 10

HOST_REGEX = r"^((25[0-5]|2[0-4][0-9]|[0-1]?[0-9][0-9]?)\.){3}(25[0-5]|2[0-4][0-9]|[0-1]?[0-9][0-9]?)$"
PORT_REGEX = r"^\d{1,5}$"

# Form definition published to the panel (GET /config/fields).
CONFIG_FIELDS = [
    {
        "type": "textinput",
        "id": "host",
        "label": "Host",
        "width": 6,
        "default": DEFAULT_HOST,
        "regex": HOST_REGEX,
        "required": True,
    },
    {
        "type": "textinput",
        "id": "port",
        "label": "Port",
        "width": 4,
        "default": DEFAULT_PORT,
        "regex": PORT_REGEX,
        "required": True,
    },
    {
        "type": "number",
        "id": "rundownPollIntervalSeconds",
        "label": "Rundown poll interval (seconds)",
        "width": 4,
        "min": RUNDOWN_POLL_MIN,
        "max": RUNDOWN_POLL_MAX,
        "default": RUNDOWN_POLL_DEFAULT,
        "required": True,
    },
    {
        "type": "number",
        "id": "groupPollIntervalSeconds",
        "label": "Group poll interval (seconds)",
        "width": 4,
        "min": GROUP_POLL_MIN,
        "max": GROUP_POLL_MAX,
        "default": GROUP_POLL_DEFAULT,
        "required": True,
    },
]


def _search_paths() -> list[str]:
    override = os.environ.get(ENV_CONFIG_PATH)
    return ([override] if override else []) + _SEARCH_PATHS


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.warning("No config.json found — using empty config")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("panel")                         → config["panel"]
    cfg("bridge", "port")                → config["bridge"]["port"]
    cfg("bridge", "port", default=8780)  → config["bridge"]["port"] or 8780
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()


def _interval(raw, name: str, low: int, high: int, default: int, fallback: int) -> int:
    """Parse a poll interval; out-of-range values are silently replaced."""
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Config %s=%r is not a number — using %d", name, raw, default)
        return default
    if value < low or value > high:
        logger.debug("Config %s=%d outside [%d, %d] — using %d", name, value, low, high, fallback)
        return fallback
    return value


def validate_config(raw: dict | None, *, require_connection: bool = False) -> dict:
    """Normalise the ``superconductor`` section.

    Returns a new dict with ``host`` and ``port`` as strings and both poll
    intervals as ints.  Raises ConfigError for a bad host or port.  A config
    file may leave host/port out (local defaults apply); panel updates pass
    ``require_connection=True`` and must carry both.
    """
    raw = dict(raw or {})

    if require_connection:
        missing = [k for k in ("host", "port") if raw.get(k) in (None, "")]
        if missing:
            raise ConfigError(f"missing required field(s): {', '.join(missing)}")

    host = str(raw.get("host") or DEFAULT_HOST).strip()
    if not re.match(HOST_REGEX, host):
        raise ConfigError(f"host must be an IPv4 address, got {host!r}")

    port = str(raw.get("port") or DEFAULT_PORT).strip()
    if not re.match(PORT_REGEX, port):
        raise ConfigError(f"port must be 1-5 digits, got {port!r}")

    return {
        "host": host,
        "port": port,
        "rundownPollIntervalSeconds": _interval(
            raw.get("rundownPollIntervalSeconds"), "rundownPollIntervalSeconds",
            RUNDOWN_POLL_MIN, RUNDOWN_POLL_MAX, RUNDOWN_POLL_DEFAULT, RUNDOWN_POLL_FALLBACK),
        "groupPollIntervalSeconds": _interval(
            raw.get("groupPollIntervalSeconds"), "groupPollIntervalSeconds",
            GROUP_POLL_MIN, GROUP_POLL_MAX, GROUP_POLL_DEFAULT, GROUP_POLL_FALLBACK),
    }

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

SETTINGS_FILE_ENV = "CLAWVPS_SETTINGS_FILE"
DEFAULT_SETTINGS_FILE = Path("/etc/clawvps/settings.yml")

DEFAULT_SERVICE_ACCOUNT = "openclaw"
DEFAULT_GATEWAY_PORT = 18789
DEFAULT_NODE_VERSION_REQUIRED = 22
DEFAULT_MIN_DISK_SPACE_GB = 2
DEFAULT_INSTALL_LOG_FILE = "/var/log/openclaw_install.log"
DEFAULT_UPDATE_HOUR = 3
SOURCE_ARCHIVE_URL_ENV = "CLAWVPS_SOURCE_ARCHIVE_URL"

GATEWAY_UNIT = "openclaw-gateway"
TAILSCALE_UDP_PORT = 41641
TAILSCALE_CGNAT_RANGE = "100.64.0.0/10"
BROWSER_PROFILE_NAME = "openclaw"
BROWSER_CDP_PORT = 18800
BROWSER_PROFILE_COLOR = "#FF4500"
LOCK_TIMEOUT_SECONDS = 3600
UPDATE_LOCK_FILE = Path("/tmp/openclaw-update.lock")
INSTALL_LOCK_FILE = Path("/tmp/openclaw-install.lock")
FETCHED_SOURCE_DIR = Path("/tmp/clawvps-installer")
NETWORK_PROBE_URL = "https://www.google.com"


def strip_inline_comment(value: str) -> str:
    in_single = False
    in_double = False
    for idx, ch in enumerate(value):
        if ch == "'" and not in_double:
            in_single = not in_single
        elif ch == '"' and not in_single:
            in_double = not in_double
        elif ch == "#" and not in_single and not in_double:
            return value[:idx]
    return value


def parse_scalar(text: str, key: str) -> str:
    """Return the value of a top-level ``key: value`` line, unquoted."""
    prefix = f"{key}:"
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or not line.startswith(prefix):
            continue
        value = strip_inline_comment(line[len(prefix) :]).strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
            return value[1:-1].strip()
        return value
    return ""


def settings_file() -> Path:
    override = os.getenv(SETTINGS_FILE_ENV)
    if override:
        return Path(override).expanduser()
    return DEFAULT_SETTINGS_FILE


@lru_cache(maxsize=4)
def _settings_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError:
        return ""


def setting(key: str, default: str = "") -> str:
    env_value = os.getenv(f"CLAWVPS_{key.upper()}")
    if env_value:
        return env_value.strip()
    value = parse_scalar(_settings_text(settings_file()), key)
    return value if value else default


def setting_int(key: str, default: int) -> int:
    raw = setting(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def service_account() -> str:
    return setting("service_account", DEFAULT_SERVICE_ACCOUNT)


def gateway_port() -> int:
    return setting_int("gateway_port", DEFAULT_GATEWAY_PORT)


def node_version_required() -> int:
    return setting_int("node_version_required", DEFAULT_NODE_VERSION_REQUIRED)


def min_disk_space_gb() -> int:
    return setting_int("min_disk_space_gb", DEFAULT_MIN_DISK_SPACE_GB)


def install_log_file() -> Path:
    return Path(setting("install_log_file", DEFAULT_INSTALL_LOG_FILE)).expanduser()


def update_hour() -> int:
    hour = setting_int("update_hour", DEFAULT_UPDATE_HOUR)
    return hour if 0 <= hour <= 23 else DEFAULT_UPDATE_HOUR


def source_archive_url() -> str:
    """Empty unless configured; only then is the installer fetched as an archive."""
    return setting("source_archive_url")

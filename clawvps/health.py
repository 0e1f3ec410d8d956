from __future__ import annotations

import time
import urllib.error
import urllib.request
from dataclasses import dataclass

from clawvps.config import GATEWAY_UNIT
from clawvps.system import SystemRunner

ACTIVE_TIMEOUT_SECONDS = 30
HTTP_ATTEMPTS = 10
POLL_SECONDS = 1
HTTP_TIMEOUT_SECONDS = 2


@dataclass(frozen=True)
class HealthReport:
    active: bool
    ready: bool
    detected_by: str = ""


def wait_for_active(
    runner: SystemRunner,
    unit: str = GATEWAY_UNIT,
    *,
    timeout_seconds: int = ACTIVE_TIMEOUT_SECONDS,
    poll_seconds: int = POLL_SECONDS,
) -> bool:
    waited = 0
    while waited < timeout_seconds:
        if runner.user_unit_active(unit):
            return True
        time.sleep(poll_seconds)
        waited += poll_seconds
    return runner.user_unit_active(unit)


def http_responds(url: str, *, timeout: float = HTTP_TIMEOUT_SECONDS) -> bool:
    """True if anything answers HTTP at url; error statuses still count."""
    try:
        with urllib.request.urlopen(url, timeout=timeout):
            return True
    except urllib.error.HTTPError:
        return True
    except (urllib.error.URLError, OSError, ValueError):
        return False


def wait_for_http(base_url: str, *, attempts: int = HTTP_ATTEMPTS, poll_seconds: int = POLL_SECONDS) -> bool:
    for attempt in range(attempts):
        if http_responds(f"{base_url}/health") or http_responds(base_url):
            return True
        if attempt + 1 < attempts:
            time.sleep(poll_seconds)
    return False


def port_listening(runner: SystemRunner, port: int) -> bool:
    for tool in ("ss", "netstat"):
        if not runner.has_command(tool):
            continue
        listing = runner.output([tool, "-tlnp"])
        return f":{port}" in listing
    return False


def gateway_process_running(runner: SystemRunner) -> bool:
    return runner.succeeds(["pgrep", "-f", "openclaw.*gateway"])


def check_readiness(runner: SystemRunner, base_url: str, port: int) -> tuple[bool, str]:
    """Walk the probe chain; the first positive signal wins."""
    if wait_for_http(base_url):
        return True, "http"
    if port_listening(runner, port):
        return True, "port"
    if gateway_process_running(runner):
        return True, "process"
    return False, ""


def check_gateway(runner: SystemRunner, base_url: str, port: int, unit: str = GATEWAY_UNIT) -> HealthReport:
    if not wait_for_active(runner, unit):
        return HealthReport(active=False, ready=False)
    ready, detected_by = check_readiness(runner, base_url, port)
    return HealthReport(active=True, ready=ready, detected_by=detected_by)

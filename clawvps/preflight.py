from __future__ import annotations

import shutil
import urllib.error
import urllib.request
from dataclasses import replace
from pathlib import Path

from clawvps.config import GATEWAY_UNIT, NETWORK_PROBE_URL
from clawvps.console import C
from clawvps.context import OsRelease, ProvisionContext
from clawvps.errors import PrerequisiteError

OS_RELEASE_FILE = Path("/etc/os-release")
SUPPORTED_DISTROS = {"ubuntu", "debian"}
NETWORK_TIMEOUT_SECONDS = 5
GIB = 1024**3


def read_os_release(path: Path | None = None) -> OsRelease:
    path = OS_RELEASE_FILE if path is None else path
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PrerequisiteError(f"Cannot detect OS version: {path} is not readable") from exc
    return OsRelease.parse(text)


def free_space_gb(path: str = "/") -> int:
    return shutil.disk_usage(path).free // GIB


def network_reachable(url: str = NETWORK_PROBE_URL, *, timeout: float = NETWORK_TIMEOUT_SECONDS) -> bool:
    try:
        with urllib.request.urlopen(url, timeout=timeout):
            return True
    except urllib.error.HTTPError:
        return True
    except (urllib.error.URLError, OSError, ValueError):
        return False


def stop_running_gateway(ctx: ProvisionContext) -> bool:
    """Stop the gateway so upgrades do not race its open files."""
    if not ctx.runner.user_unit_active(GATEWAY_UNIT):
        return False
    ctx.reporter.say("")
    ctx.reporter.say(f"{C.YELLOW}Stopping OpenClaw gateway for installation...{C.NC}")
    ctx.reporter.info(f"Stopping {GATEWAY_UNIT} before installation")
    ctx.runner.systemctl_user("stop", GATEWAY_UNIT)
    return True


def run_preflight(ctx: ProvisionContext) -> ProvisionContext:
    """Pass/fail gate run once before the phase chain; returns the enriched context."""
    reporter = ctx.reporter
    reporter.step("Running pre-install checks")
    try:
        os_release, available = _check_prerequisites(ctx)
    except PrerequisiteError as exc:
        reporter.failed(str(exc))
        raise

    gateway_was_running = stop_running_gateway(ctx)
    reporter.done(f"Pre-install checks passed ({os_release.id} {os_release.version_id}, {available}GB free)")
    return replace(ctx, os_release=os_release, gateway_was_running=gateway_was_running)


def _check_prerequisites(ctx: ProvisionContext) -> tuple[OsRelease, int]:
    reporter = ctx.reporter
    os_release = read_os_release()
    if os_release.id not in SUPPORTED_DISTROS:
        reporter.advisory(
            "UNSUPPORTED DISTRIBUTION",
            f"Detected '{os_release.pretty_name or os_release.id or 'unknown'}'; "
            "only Ubuntu and Debian are supported. Continuing anyway.",
        )

    available = free_space_gb()
    if available < ctx.min_disk_space_gb:
        raise PrerequisiteError(
            f"Insufficient disk space. Need {ctx.min_disk_space_gb}GB, have {available}GB"
        )

    if not network_reachable():
        raise PrerequisiteError(f"Internet connectivity check failed ({NETWORK_PROBE_URL} unreachable)")

    return os_release, available

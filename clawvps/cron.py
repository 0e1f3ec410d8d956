from __future__ import annotations

import shlex
import shutil
import sys

from clawvps import config, paths
from clawvps.context import ProvisionContext
from clawvps.errors import InstallationError
from clawvps.phases import Phase
from clawvps.system import SystemRunner

CRON_MARKER = "clawvps update"


def updater_command() -> str:
    """Absolute command line for the updater, as cron has a minimal PATH."""
    executable = shutil.which("clawvps")
    if executable:
        return f"{shlex.quote(executable)} update --quiet"
    return f"{shlex.quote(sys.executable)} -m clawvps update --quiet"


def cron_entry(ctx: ProvisionContext, *, hour: int | None = None) -> str:
    hour = config.update_hour() if hour is None else hour
    log_file = paths.update_cron_log_file(ctx.home)
    return f"0 {hour} * * * {updater_command()} >> {log_file} 2>&1"


def current_crontab(runner: SystemRunner) -> str:
    # "no crontab for <user>" exits non-zero; treat it as empty.
    proc = runner.run(["crontab", "-l"], check=False)
    if proc.returncode != 0:
        return ""
    return proc.stdout or ""


def has_update_entry(crontab: str) -> bool:
    return any(
        CRON_MARKER in line and not line.lstrip().startswith("#") for line in crontab.splitlines()
    )


def update_cron_present(ctx: ProvisionContext) -> bool:
    return has_update_entry(current_crontab(ctx.runner))


def install_update_cron(ctx: ProvisionContext) -> None:
    if not ctx.runner.has_command("crontab"):
        raise InstallationError("crontab is not available; daily auto-update not scheduled")
    existing = current_crontab(ctx.runner)
    lines = [line for line in existing.splitlines() if line.strip()]
    lines.append(cron_entry(ctx))
    ctx.runner.run(["crontab", "-"], input_text="\n".join(lines) + "\n")


AUTO_UPDATE = Phase(
    name="auto-update",
    title="Setting up daily auto-update",
    probe=update_cron_present,
    apply=install_update_cron,
    verify=update_cron_present,
    diagnostic="Crontab entry for the updater was not saved",
    satisfied_message="Daily auto-update already scheduled",
    applied_message=lambda ctx: f"Daily auto-update scheduled at {config.update_hour()}:00",
    advisory=True,
)

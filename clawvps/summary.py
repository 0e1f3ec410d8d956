from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from clawvps.config import GATEWAY_UNIT
from clawvps.console import C, RULE, banner, command_hint
from clawvps.context import ProvisionContext
from clawvps.packages import first_line, go_version
from clawvps.phases import PhaseResult
from clawvps.system import SystemRunner

PERSISTED_LOG_DIR = Path("/logs")
PERSISTED_LOG_NAME = "openclaw_install.log"


@dataclass(frozen=True)
class Component:
    label: str
    version: str


def installed_components(ctx: ProvisionContext) -> list[Component]:
    runner = ctx.runner
    probes: list[tuple[str, str, Callable[[], str]]] = [
        ("Node.js", "node", lambda: first_line(runner, ["node", "--version"])),
        ("npm", "npm", lambda: first_line(runner, ["npm", "--version"])),
        ("Go", "go", lambda: go_version(ctx)),
        ("Homebrew", "brew", lambda: first_line(runner, ["brew", "--version"])),
        ("Tailscale", "tailscale", lambda: first_line(runner, ["tailscale", "version"])),
        ("OpenClaw", "openclaw", lambda: first_line(runner, ["openclaw", "--version"])),
    ]
    return [Component(label, version()) for label, binary, version in probes if runner.has_command(binary)]


def tailscale_authenticated(runner: SystemRunner) -> bool | None:
    """None when tailscale is not installed."""
    if not runner.has_command("tailscale"):
        return None
    return runner.succeeds(["tailscale", "status"], sudo=True)


def persist_logs(ctx: ProvisionContext, log_path: Path | None, target: Path = PERSISTED_LOG_DIR) -> bool:
    """Copy the install log and OpenClaw config out to a mounted /logs dir, if present."""
    if not target.is_dir() or log_path is None or not log_path.is_file():
        return False
    try:
        shutil.copyfile(log_path, target / PERSISTED_LOG_NAME)
        if ctx.config_dir.is_dir():
            shutil.copytree(ctx.config_dir, target / ctx.config_dir.name, dirs_exist_ok=True)
    except OSError as exc:
        ctx.reporter.warning(f"Could not persist logs to {target}: {exc}")
        return False
    return True


def render_status(ctx: ProvisionContext, log_path: Path | None) -> None:
    reporter = ctx.reporter
    reporter.say(f"{C.BOLD}Installed Components:{C.NC}")
    for component in installed_components(ctx):
        reporter.say(f"  {C.GREEN}✓{C.NC} {component.label} {C.BLUE}{component.version}{C.NC}")
    reporter.say("")

    authenticated = tailscale_authenticated(ctx.runner)
    if authenticated:
        reporter.say(f"  {C.GREEN}✓{C.NC} Tailscale: {C.BLUE}Authenticated{C.NC}")
    elif authenticated is False:
        reporter.say(f"  {C.YELLOW}⚠{C.NC} Tailscale: {C.YELLOW}NOT authenticated{C.NC}")
        reporter.say("")
        reporter.say(f"{C.YELLOW}To authenticate Tailscale, run:{C.NC}")
        reporter.say(command_hint("sudo tailscale up"))

    reporter.say("")
    if ctx.config_file.is_file():
        reporter.say(f"  {C.GREEN}✓{C.NC} OpenClaw: {C.BLUE}Configured{C.NC}")
    else:
        reporter.say(f"  {C.YELLOW}⚠{C.NC} OpenClaw: {C.YELLOW}Not configured{C.NC}")
        reporter.say(f"{C.YELLOW}  Run: openclaw onboard --install-daemon{C.NC}")

    reporter.say("")
    if log_path is not None:
        reporter.say(f"{C.BOLD}Log file:{C.NC} {C.BLUE}{log_path}{C.NC}")
    reporter.say(f"{C.BOLD}Config dir:{C.NC} {C.BLUE}{ctx.config_dir}{C.NC}")


def display_summary(ctx: ProvisionContext, results: Sequence[PhaseResult], log_path: Path | None) -> None:
    reporter = ctx.reporter
    banner("INSTALLATION COMPLETE", C.GREEN, heavy=True, stream=reporter.out)
    render_status(ctx, log_path)

    attention = [result for result in results if result.status in {"deferred", "degraded"}]
    if attention:
        reporter.say("")
        reporter.say(f"{C.BOLD}Needs attention:{C.NC}")
        for result in attention:
            reporter.say(f"  {C.YELLOW}⚠{C.NC} {result.name}: {result.message}")

    reporter.say("")
    reporter.say(f"{C.GREEN}{RULE}{C.NC}")
    reporter.say("")


def show_status(ctx: ProvisionContext, log_path: Path | None) -> int:
    """Read-only report for ``clawvps status``."""
    reporter = ctx.reporter
    render_status(ctx, log_path)
    if ctx.runner.user_unit_active(GATEWAY_UNIT):
        reporter.say(f"{C.BOLD}Gateway:{C.NC} {C.GREEN}active{C.NC} ({ctx.gateway_url})")
    elif ctx.runner.user_unit_installed(GATEWAY_UNIT):
        reporter.say(f"{C.BOLD}Gateway:{C.NC} {C.YELLOW}inactive{C.NC}")
        reporter.say(command_hint(f"systemctl --user start {GATEWAY_UNIT}"))
    else:
        reporter.say(f"{C.BOLD}Gateway:{C.NC} {C.YELLOW}not installed{C.NC}")
    return 0

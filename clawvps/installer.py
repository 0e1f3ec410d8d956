from __future__ import annotations

import os
from pathlib import Path

from clawvps import config, paths
from clawvps.console import C
from clawvps.context import build_context, current_user
from clawvps.cron import AUTO_UPDATE
from clawvps.errors import ProvisionError, main_guard
from clawvps.gateway import CREDENTIAL_PERMISSIONS, GATEWAY, ONBOARDING, USER_SERVICES, VPS_DEFAULTS
from clawvps.identity import Invocation, bootstrap, detect_invocation
from clawvps.locks import LockHeld, pid_lock
from clawvps.logs import LogSink
from clawvps.packages import GO, GOOGLE_CHROME, HOMEBREW, NODEJS, OPENCLAW, SYSTEM_PACKAGES, TAILSCALE
from clawvps.phases import Phase, run_phases
from clawvps.preflight import run_preflight
from clawvps.reporter import Reporter
from clawvps.security import FAIL2BAN, FIREWALL, SSH_HARDENING, TAILSCALE_ONLY
from clawvps.summary import display_summary, persist_logs, show_status
from clawvps.system import CommandError, SystemRunner

INSTALL_LOG_MODE = 0o640

# Leaves first: packages before runtimes, runtimes before the agent,
# the agent before its service, the service before health checks.
PHASE_ORDER: tuple[Phase, ...] = (
    SYSTEM_PACKAGES,
    TAILSCALE,
    FIREWALL,
    FAIL2BAN,
    SSH_HARDENING,
    GOOGLE_CHROME,
    NODEJS,
    HOMEBREW,
    GO,
    OPENCLAW,
    USER_SERVICES,
    ONBOARDING,
    VPS_DEFAULTS,
    CREDENTIAL_PERMISSIONS,
    GATEWAY,
    TAILSCALE_ONLY,
    AUTO_UPDATE,
)


def build_phases() -> list[Phase]:
    return list(PHASE_ORDER)


def open_install_log(runner: SystemRunner, home: Path) -> LogSink:
    """Open the shared install log, falling back to one under ~/.openclaw."""
    path = config.install_log_file()
    try:
        if not os.access(path, os.W_OK):
            user = current_user()
            runner.run(["touch", str(path)], sudo=True)
            runner.run(["chown", f"{user}:", str(path)], sudo=True)
        os.chmod(path, INSTALL_LOG_MODE)
        return LogSink(path)
    except (CommandError, OSError):
        return LogSink(paths.fallback_install_log_file(home))


def print_header(reporter: Reporter, *, hardened: bool) -> None:
    reporter.say(f"{C.CYAN}")
    reporter.say("╔══════════════════════════════════════════════════════════════════╗")
    reporter.say("║                   OpenClaw Installation Script                   ║")
    reporter.say("║                   for Ubuntu VPS with Tailscale                  ║")
    reporter.say("╚══════════════════════════════════════════════════════════════════╝")
    reporter.say(f"{C.NC}")
    if hardened:
        reporter.say(f"{C.YELLOW}Running in HARDENED mode{C.NC}")
        reporter.say("")


def install(
    runner: SystemRunner,
    reporter: Reporter,
    *,
    hardened: bool,
    invocation: Invocation | None = None,
    phases: list[Phase] | None = None,
    lock_path: Path = config.INSTALL_LOCK_FILE,
) -> int:
    print_header(reporter, hardened=hardened)
    reporter.info("Starting OpenClaw installation...")
    if hardened:
        reporter.info("Hardened mode enabled")

    invocation = detect_invocation() if invocation is None else invocation
    handoff_code = bootstrap(
        runner, reporter, invocation, account=config.service_account(), hardened=hardened
    )
    if handoff_code is not None:
        return handoff_code

    try:
        with pid_lock(lock_path, timeout_seconds=config.LOCK_TIMEOUT_SECONDS):
            ctx = build_context(runner, reporter, hardened=hardened, interactive=invocation.interactive)
            ctx = run_preflight(ctx)
            results = run_phases(build_phases() if phases is None else phases, ctx)
    except LockHeld as exc:
        raise ProvisionError(f"Another installation is already running (PID: {exc.pid})") from exc

    persist_logs(ctx, reporter.log_path)
    display_summary(ctx, results, reporter.log_path)
    reporter.info("Installation completed successfully")
    return 0


def run_install(*, hardened: bool) -> None:
    runner = SystemRunner()
    sink = open_install_log(runner, paths.home_dir())
    runner.output_sink = sink.debug
    reporter = Reporter(sink)

    def on_fatal(message: str, _code: int) -> None:
        reporter.fatal(message)

    try:
        main_guard(lambda: install(runner, reporter, hardened=hardened), on_fatal=on_fatal)
    finally:
        reporter.close()


def status() -> int:
    runner = SystemRunner()
    ctx = build_context(runner, Reporter(None), hardened=False, interactive=False)
    log_path = config.install_log_file()
    return show_status(ctx, log_path if log_path.is_file() else None)


def run_status() -> None:
    main_guard(status)

from __future__ import annotations

import argparse
import os
import signal
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import FrameType

from clawvps import config, paths
from clawvps.config import GATEWAY_UNIT
from clawvps.console import C, banner, command_hint
from clawvps.errors import main_guard
from clawvps.locks import LockHeld, pid_lock
from clawvps.logs import LogSink
from clawvps.packages import openclaw_version
from clawvps.reporter import Reporter
from clawvps.system import CommandError, SystemRunner

RESTART_SETTLE_SECONDS = 3


class UpdateOutcome(Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass(frozen=True)
class UpdateResult:
    outcome: UpdateOutcome
    before: str
    after: str = ""


def _npm(runner: SystemRunner, *args: str) -> bool:
    try:
        return runner.run(["npm", *args], check=False).returncode == 0
    except CommandError:
        return False


def run_update(runner: SystemRunner, reporter: Reporter) -> UpdateResult:
    """npm update, falling back to a clean reinstall; compares versions."""
    before = openclaw_version(runner)
    reporter.info(f"Current OpenClaw version: {before}")
    reporter.info("Checking for updates...")

    if _npm(runner, "update", "-g", "openclaw"):
        after = openclaw_version(runner)
        if after != before:
            reporter.success(f"OpenClaw updated: {before} → {after}")
            return UpdateResult(UpdateOutcome.UPDATED, before, after)
        reporter.info(f"OpenClaw is already up to date ({before})")
        return UpdateResult(UpdateOutcome.UNCHANGED, before, after)

    reporter.warning("npm update failed, trying fresh install...")
    _npm(runner, "cache", "clean", "--force")
    if not _npm(runner, "install", "-g", "openclaw@latest"):
        reporter.error(f"Update failed. Check {reporter.log_path} for details.")
        return UpdateResult(UpdateOutcome.FAILED, before)

    after = openclaw_version(runner)
    if after != before:
        reporter.success(f"OpenClaw reinstalled: {before} → {after}")
        return UpdateResult(UpdateOutcome.UPDATED, before, after)
    reporter.success(f"OpenClaw reinstalled (same version: {before})")
    return UpdateResult(UpdateOutcome.UNCHANGED, before, after)


def restart_gateway(runner: SystemRunner, reporter: Reporter) -> bool:
    if not runner.user_unit_active(GATEWAY_UNIT):
        reporter.info("Gateway is not running, skipping restart")
        return True
    reporter.info("Restarting OpenClaw gateway...")
    if runner.systemctl_user("restart", GATEWAY_UNIT).returncode != 0:
        reporter.error("Failed to restart gateway")
        return False
    time.sleep(RESTART_SETTLE_SECONDS)
    if not runner.user_unit_active(GATEWAY_UNIT):
        reporter.error("Gateway failed to start after restart")
        return False
    reporter.success("Gateway restarted successfully")
    return True


def _raise_system_exit(signum: int, _frame: FrameType | None) -> None:
    raise SystemExit(128 + signum)


def install_signal_handlers() -> None:
    """Turn SIGTERM/SIGHUP into SystemExit so the lock is released on the way out."""
    signal.signal(signal.SIGTERM, _raise_system_exit)
    signal.signal(signal.SIGHUP, _raise_system_exit)


def build_updater(home: Path, *, quiet: bool) -> tuple[SystemRunner, Reporter]:
    sink = LogSink(paths.update_log_file(home))
    reporter = Reporter(sink, quiet=quiet, echo_log=True)
    runner = SystemRunner(output_sink=sink.debug)
    runner.prepend_path(paths.local_bin_dir(home))
    return runner, reporter


def run_updater(
    runner: SystemRunner,
    reporter: Reporter,
    *,
    lock_path: Path = config.UPDATE_LOCK_FILE,
) -> int:
    if not reporter.quiet:
        banner("OpenClaw Auto-Update", C.CYAN, stream=reporter.out)

    try:
        with pid_lock(lock_path, timeout_seconds=config.LOCK_TIMEOUT_SECONDS):
            result = run_update(runner, reporter)
            if result.outcome is UpdateOutcome.UNCHANGED:
                reporter.say(f"{C.GREEN}✓{C.NC} Already up to date")
                return 0
            if result.outcome is UpdateOutcome.FAILED:
                reporter.say("")
                reporter.say(f"{C.RED}✗{C.NC} Update failed. Check logs:")
                reporter.say(command_hint(f"cat {reporter.log_path}"))
                return 1

            restarted = restart_gateway(runner, reporter)
            reporter.say("")
            if restarted:
                reporter.say(f"{C.GREEN}✓{C.NC} Update completed successfully")
                reporter.say(f"{C.GREEN}✓{C.NC} Gateway restarted")
                return 0
            reporter.say(f"{C.YELLOW}⚠{C.NC} Update applied but gateway had issues")
            return 1
    except LockHeld as exc:
        reporter.info(f"Another update is already running (PID: {exc.pid})")
        return 0


def run(*, quiet: bool, home: Path | None = None) -> int:
    home = paths.home_dir() if home is None else home
    runner, reporter = build_updater(home, quiet=quiet)
    runner.env["XDG_RUNTIME_DIR"] = str(paths.runtime_dir(os.getuid()))
    install_signal_handlers()
    try:
        return run_updater(runner, reporter)
    finally:
        reporter.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Update OpenClaw and restart its gateway when the version changes.")
    parser.add_argument("--quiet", action="store_true", help="Only write the log file (for cron)")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    main_guard(lambda: run(quiet=args.quiet))


if __name__ == "__main__":
    main()

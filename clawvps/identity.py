"""Privilege hand-off: never run the provisioning chain as root.

Root invocations create the service account and either print hand-off
instructions (attended shell) or re-run the installer as that account and
forward its exit code (container or piped/CI session).
"""

from __future__ import annotations

import os
import shlex
import shutil
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping

from clawvps import config, paths
from clawvps.console import C, banner
from clawvps.context import current_user
from clawvps.errors import PrerequisiteError, ProvisionError
from clawvps.io_utils import atomic_write_text, read_text_or_empty
from clawvps.reporter import Reporter
from clawvps.system import SystemRunner

DOCKERENV = Path("/.dockerenv")
SUDOERS_DIR = Path("/etc/sudoers.d")
SUDOERS_MODE = 0o440
COPY_IGNORE = shutil.ignore_patterns(".git", "__pycache__", "*.pyc", ".pytest_cache")


class IdentityState(Enum):
    UNRESOLVED = "unresolved"
    NEEDS_HANDOFF = "needs_handoff"
    RESOLVED = "resolved"


class HandoffAction(Enum):
    PROCEED = "proceed"
    HANDOFF_AND_EXIT = "handoff_and_exit"
    HANDOFF_AND_WAIT = "handoff_and_wait"


@dataclass(frozen=True)
class Invocation:
    euid: int
    user: str
    interactive: bool
    in_container: bool

    @property
    def is_root(self) -> bool:
        return self.euid == 0


@dataclass(frozen=True)
class Transition:
    state: IdentityState
    action: HandoffAction | None = None


def detect_invocation(environ: Mapping[str, str] | None = None) -> Invocation:
    env = os.environ if environ is None else environ
    return Invocation(
        euid=os.geteuid(),
        user=current_user(),
        interactive=sys.stdin.isatty(),
        in_container=DOCKERENV.exists() or env.get("container") == "docker",
    )


def transition(state: IdentityState, invocation: Invocation) -> Transition:
    if state is IdentityState.UNRESOLVED:
        if invocation.is_root:
            return Transition(IdentityState.NEEDS_HANDOFF)
        return Transition(IdentityState.RESOLVED, HandoffAction.PROCEED)
    if state is IdentityState.NEEDS_HANDOFF:
        if invocation.in_container or not invocation.interactive:
            return Transition(IdentityState.RESOLVED, HandoffAction.HANDOFF_AND_WAIT)
        return Transition(IdentityState.RESOLVED, HandoffAction.HANDOFF_AND_EXIT)
    raise ValueError("identity already resolved")


def resolve_action(invocation: Invocation) -> HandoffAction:
    state = IdentityState.UNRESOLVED
    action = HandoffAction.PROCEED
    while state is not IdentityState.RESOLVED:
        step = transition(state, invocation)
        state = step.state
        if step.action is not None:
            action = step.action
    return action


def sudoers_line(account: str) -> str:
    return f"{account} ALL=(ALL) NOPASSWD:ALL\n"


def ensure_service_account(runner: SystemRunner, reporter: Reporter, account: str) -> bool:
    """Create the account with passwordless sudo. Returns True when created."""
    created = False
    if runner.succeeds(["id", account]):
        reporter.say(f"{C.GREEN}✓{C.NC} User '{account}' already exists")
    else:
        reporter.say(f"Creating user '{account}'...")
        runner.run(["useradd", "-m", "-s", "/bin/bash", account])
        runner.run(["usermod", "-aG", "sudo", account])
        created = True

    sudoers_file = SUDOERS_DIR / account
    if read_text_or_empty(sudoers_file) != sudoers_line(account):
        SUDOERS_DIR.mkdir(parents=True, exist_ok=True)
        atomic_write_text(sudoers_file, sudoers_line(account), mode=SUDOERS_MODE)
        reporter.info(f"Granted passwordless sudo to {account} via {sudoers_file}")
    if created:
        reporter.say(f"{C.GREEN}✓{C.NC} User '{account}' created with passwordless sudo")
    return created


def fetch_source_tree(runner: SystemRunner, url: str, dest: Path | None = None) -> Path:
    dest = config.FETCHED_SOURCE_DIR if dest is None else dest
    shutil.rmtree(dest, ignore_errors=True)
    dest.mkdir(parents=True)
    archive = dest.parent / f"{dest.name}.tar.gz"
    try:
        runner.run(["curl", "-fsSL", url, "-o", str(archive)])
        runner.run(["tar", "-xzf", str(archive), "-C", str(dest), "--strip-components=1"])
    finally:
        archive.unlink(missing_ok=True)
    if not paths.has_source_tree(dest):
        raise ProvisionError(f"Error: Downloaded archive does not contain the installer: {url}")
    return dest


def resolve_source_tree(runner: SystemRunner, reporter: Reporter) -> Path | None:
    """Return a checkout to hand off, or None to re-run the installed package."""
    tree = paths.locate_source_tree()
    if tree is not None:
        return tree
    url = config.source_archive_url()
    if not url:
        return None
    reporter.info(f"Installer source not found on disk; fetching {url}")
    return fetch_source_tree(runner, url)


def _world_traversable(path: Path) -> bool:
    for entry in (path, *path.parents):
        try:
            if not entry.stat().st_mode & 0o001:
                return False
        except OSError:
            return False
    return True


def interpreter_reachable(executable: str | None = None) -> bool:
    """True if other accounts can run the interpreter this installer runs under."""
    path = Path(executable or sys.executable)
    return _world_traversable(path) and _world_traversable(path.resolve())


def open_home(reporter: Reporter, account: str) -> None:
    try:
        # The account must be able to traverse into a tree or venv under root's home.
        os.chmod(Path.home(), 0o755)
    except OSError as exc:
        reporter.warning(f"Could not open {Path.home()} to {account}: {exc}")


def require_interpreter(reporter: Reporter, account: str) -> None:
    open_home(reporter, account)
    if not interpreter_reachable():
        raise PrerequisiteError(
            f"Error: '{account}' cannot run {sys.executable} and no installer checkout was found.\n"
            f"Install clawvps system-wide, or set {config.SOURCE_ARCHIVE_URL_ENV} to an archive of it."
        )


def install_command(tree: Path | None, *, hardened: bool) -> str:
    command = f"{shlex.quote(sys.executable)} -m clawvps install"
    if tree is not None:
        command = f"cd {shlex.quote(str(tree))} && {command}"
    return f"{command} --hardened" if hardened else command


def handoff_and_exit(
    runner: SystemRunner, reporter: Reporter, account: str, tree: Path | None, *, hardened: bool
) -> int:
    target = None
    if tree is not None:
        target = paths.account_home(account) / tree.name
        if tree.resolve() != target.resolve():
            shutil.copytree(tree, target, dirs_exist_ok=True, ignore=COPY_IGNORE)
            runner.run(["chown", "-R", f"{account}:{account}", str(target)])
            reporter.say(f"{C.GREEN}✓{C.NC} Files copied to {target}/")

    reporter.say("")
    reporter.say(f"{C.BOLD}Next steps:{C.NC}")
    reporter.say(f"  1. Switch to the {account} user:")
    reporter.say(f"     {C.CYAN}su - {account}{C.NC}")
    reporter.say("")
    reporter.say("  2. Re-run the installation:")
    reporter.say(f"     {C.CYAN}{install_command(target, hardened=hardened)}{C.NC}")
    reporter.say("")
    reporter.say(f"{C.YELLOW}Why?{C.NC} OpenClaw and Homebrew cannot run as root.")
    reporter.say(f"       The installation will continue under the '{account}' account.")
    reporter.say("")
    reporter.info(f"Hand-off instructions printed for {account}")
    return 0


def handoff_and_wait(
    runner: SystemRunner, reporter: Reporter, account: str, tree: Path | None, *, hardened: bool
) -> int:
    reporter.say("")
    reporter.say(f"{C.CYAN}Docker/CI environment detected.{C.NC}")
    reporter.say(f"Continuing installation as '{account}' user...")
    reporter.say("")

    open_home(reporter, account)
    runner.run(["chown", "-R", f"{account}:{account}", str(paths.account_home(account))])

    command = install_command(tree, hardened=hardened)
    reporter.info(f"Re-running installer as {account}: {command}")
    proc = runner.run(["su", "-", account, "-c", command], check=False, capture_output=False)
    return proc.returncode


def confirm_account(reporter: Reporter, invocation: Invocation, account: str) -> bool:
    """Warn when a non-root user is not the service account."""
    if invocation.user == account:
        return True
    reporter.warning(f"Running as '{invocation.user}' instead of '{account}'")
    reporter.say("")
    reporter.say(f"{C.YELLOW}Warning:{C.NC} You're not running as the '{account}' user.")
    reporter.say(f"For best results, run as '{account}'.")
    reporter.say("")
    if not invocation.interactive:
        return True
    if reporter.confirm("Continue anyway?"):
        return True
    reporter.say(f"Exiting. Run as '{account}' or as root to create the user.")
    return False


def bootstrap(
    runner: SystemRunner,
    reporter: Reporter,
    invocation: Invocation,
    *,
    account: str,
    hardened: bool,
) -> int | None:
    """Resolve identity. None means continue in-process; an int is the exit code."""
    action = resolve_action(invocation)
    if action is HandoffAction.PROCEED:
        return None if confirm_account(reporter, invocation, account) else 1

    banner(f"RUNNING AS ROOT - SETTING UP {account.upper()} USER", C.YELLOW, stream=reporter.out)
    ensure_service_account(runner, reporter, account)
    tree = resolve_source_tree(runner, reporter)
    if tree is None:
        require_interpreter(reporter, account)
    if action is HandoffAction.HANDOFF_AND_WAIT:
        return handoff_and_wait(runner, reporter, account, tree, hardened=hardened)
    return handoff_and_exit(runner, reporter, account, tree, hardened=hardened)

from __future__ import annotations

import subprocess
import time

from clawvps import health
from clawvps.config import GATEWAY_UNIT
from clawvps.console import C, banner
from clawvps.context import ProvisionContext
from clawvps.errors import PhaseDeferred
from clawvps.io_utils import append_block_once, read_text_or_empty
from clawvps.openclaw_config import (
    instance_id,
    load_record,
    patch_vps_defaults,
    permissions_secure,
    reset_record,
    secure_permissions,
    vps_default_changes,
)
from clawvps.phases import Phase, always, never
from clawvps.system import CommandError

ONBOARD_COMMAND = ["openclaw", "onboard", "--install-daemon"]
UNATTENDED_ONBOARD_TIMEOUT_SECONDS = 300
RESTART_SETTLE_SECONDS = 3
RESET_CONFIRMATION = "DELETE"


# user-services


def _linger_enabled(ctx: ProvisionContext) -> bool:
    value = ctx.runner.output(["loginctl", "show-user", ctx.user, "--property=Linger"])
    return value.strip() == "Linger=yes"


def _runtime_wired(ctx: ProvisionContext) -> bool:
    return ctx.runtime_dir.is_dir() and "XDG_RUNTIME_DIR" in read_text_or_empty(ctx.bashrc)


def user_services_ready(ctx: ProvisionContext) -> bool:
    return _runtime_wired(ctx) and _linger_enabled(ctx)


def enable_user_services(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    # Containers without logind reject this; the runtime dir below still works.
    runner.run(["loginctl", "enable-linger", ctx.user], sudo=True, check=False)
    if not ctx.runtime_dir.is_dir():
        runner.run(["mkdir", "-p", str(ctx.runtime_dir)], sudo=True)
        runner.run(["chmod", "700", str(ctx.runtime_dir)], sudo=True)
        runner.run(["chown", f"{ctx.user}:{ctx.user}", str(ctx.runtime_dir)], sudo=True)
    append_block_once(
        ctx.bashrc,
        "XDG_RUNTIME_DIR",
        [
            "# XDG Runtime Directory for systemd user services",
            f"export XDG_RUNTIME_DIR={ctx.runtime_dir}",
        ],
    )


# onboarding


def onboarded(ctx: ProvisionContext) -> bool:
    return ctx.config_file.is_file() and ctx.runner.user_unit_installed(GATEWAY_UNIT)


def onboarding_settled(ctx: ProvisionContext) -> bool:
    # Attended sessions are always offered the keep/reset choice.
    return onboarded(ctx) and not ctx.interactive


def _offer_reset(ctx: ProvisionContext) -> bool:
    """Ask whether to keep or wipe an existing config; True means re-onboard."""
    reporter = ctx.reporter
    instance = instance_id(ctx.config_file)
    banner("OPENCLAW ALREADY CONFIGURED", C.CYAN, stream=reporter.out)
    reporter.say(f"  Instance: {C.BOLD}{instance}{C.NC}")
    reporter.say("")
    reporter.say("What would you like to do?")
    reporter.say(f"  {C.GREEN}1{C.NC}) Keep existing config and restart gateway")
    reporter.say(f"  {C.RED}2{C.NC}) Full re-onboarding {C.RED}(deletes ALL configuration){C.NC}")
    reporter.say("")
    choice = reporter.ask("  Choice [1-2]: ")

    if choice == "1":
        reporter.say(f"{C.GREEN}Keeping existing config, gateway will be restarted...{C.NC}")
        return False
    if choice != "2":
        reporter.say(f"{C.YELLOW}Invalid choice. Keeping existing config.{C.NC}")
        return False

    banner("WARNING: THIS WILL DELETE YOUR OPENCLAW CONFIGURATION", C.RED, stream=reporter.out)
    reporter.say(f"  {C.RED}• All channels will be removed{C.NC}")
    reporter.say(f"  {C.RED}• All settings will be reset{C.NC}")
    reporter.say(f"  {C.RED}• Your API keys and credentials will be deleted{C.NC}")
    reporter.say("")
    reporter.say(f"  Instance: {C.BOLD}{instance}{C.NC}")
    reporter.say("")
    if reporter.ask(f"  Type '{RESET_CONFIRMATION}' to confirm: ") != RESET_CONFIRMATION:
        reporter.say(f"{C.YELLOW}Cancelled. Keeping existing config.{C.NC}")
        return False

    reset_record(ctx.config_dir, ctx.config_file)
    reporter.info(f"Deleted OpenClaw config for instance {instance}")
    reporter.say(f"{C.GREEN}Config deleted. Starting fresh onboarding...{C.NC}")
    return True


def run_onboarding(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    reporter = ctx.reporter

    if onboarded(ctx):
        if not _offer_reset(ctx):
            return
    elif ctx.config_file.exists():
        reporter.info("Config file exists but gateway service not found. Re-running onboarding...")

    reporter.info("Starting onboarding with --install-daemon...")
    if ctx.interactive:
        proc = runner.run(ONBOARD_COMMAND, check=False, capture_output=False)
        if proc.returncode != 0:
            reporter.warning(f"Onboarding command exited with error code {proc.returncode}")
        return

    reporter.advisory(
        "NON-INTERACTIVE MODE DETECTED",
        "Attempting automatic onboarding with --install-daemon flag...",
    )
    try:
        proc = runner.run(
            ONBOARD_COMMAND,
            check=False,
            stdin=subprocess.DEVNULL,
            timeout=UNATTENDED_ONBOARD_TIMEOUT_SECONDS,
        )
        if proc.returncode != 0:
            reporter.warning(f"Onboarding command exited with error code {proc.returncode}")
    except CommandError as exc:
        reporter.warning(str(exc))

    if not ctx.config_file.is_file():
        raise PhaseDeferred(
            "Automatic onboarding did not produce a config; finish it manually.",
            title="AUTOMATIC ONBOARDING INCOMPLETE",
            remediation=(
                "openclaw onboard --install-daemon",
                f"systemctl --user start {GATEWAY_UNIT}",
            ),
        )


def onboarding_complete(ctx: ProvisionContext) -> bool:
    return ctx.config_file.is_file()


def _onboarding_settled_message(ctx: ProvisionContext) -> str:
    return f"OpenClaw already configured (instance: {instance_id(ctx.config_file)})"


# vps-defaults


def vps_defaults_applied(ctx: ProvisionContext) -> bool:
    record = load_record(ctx.config_file)
    if record is None:
        return True
    _patched, changes = vps_default_changes(record)
    return not changes


def apply_vps_defaults(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    reporter = ctx.reporter
    for key in patch_vps_defaults(ctx.config_file):
        reporter.info(f"Set {key} for headless VPS operation")
    if runner.user_unit_active(GATEWAY_UNIT):
        reporter.info("Restarting gateway to apply new configuration...")
        runner.systemctl_user("restart", GATEWAY_UNIT)
        time.sleep(RESTART_SETTLE_SECONDS)


def _vps_defaults_settled_message(ctx: ProvisionContext) -> str:
    if not ctx.config_file.exists():
        return "No config file found, skipping VPS defaults"
    return "VPS configuration already optimal"


# credential-permissions


def credentials_secured(ctx: ProvisionContext) -> bool:
    return permissions_secure(ctx.config_dir, ctx.config_file)


def secure_credentials(ctx: ProvisionContext) -> None:
    secure_permissions(ctx.config_dir, ctx.config_file)


def _credentials_settled_message(ctx: ProvisionContext) -> str:
    if not ctx.config_dir.is_dir():
        return "OpenClaw config not created yet, will secure later"
    return "Credential permissions already secured"


# gateway


def start_gateway(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    reporter = ctx.reporter
    manual_start = (
        f"systemctl --user start {GATEWAY_UNIT}",
        f"systemctl --user status {GATEWAY_UNIT}",
    )

    if not runner.user_unit_installed(GATEWAY_UNIT):
        raise PhaseDeferred(
            "Gateway service file not found. Onboarding may not have completed successfully.",
            title="GATEWAY SERVICE NOT FOUND",
            remediation=("openclaw onboard --install-daemon", manual_start[0]),
        )

    if ctx.gateway_was_running:
        reporter.info("Restarting gateway stopped during pre-flight...")
    reporter.info(f"Starting {GATEWAY_UNIT} service...")
    runner.systemctl_user("start", GATEWAY_UNIT)
    runner.systemctl_user("enable", GATEWAY_UNIT)

    report = health.check_gateway(runner, ctx.gateway_url, ctx.gateway_port)
    if not report.active:
        runner.systemctl_user("status", GATEWAY_UNIT)
        raise PhaseDeferred(
            "Gateway service not active.",
            title="GATEWAY SERVICE NOT ACTIVE",
            remediation=manual_start,
        )
    if not report.ready:
        raise PhaseDeferred(
            "Gateway service is active but health check failed",
            title="GATEWAY MAY NOT BE FULLY READY",
            remediation=(manual_start[1], f"journalctl --user -u {GATEWAY_UNIT} -f"),
        )
    reporter.debug(f"Gateway readiness detected by {report.detected_by}")
    if report.detected_by == "process":
        reporter.advisory(
            "GATEWAY READINESS UNCERTAIN",
            f"Gateway process is running but port {ctx.gateway_port} did not answer yet.",
            (manual_start[1], f"journalctl --user -u {GATEWAY_UNIT} -f"),
        )


def _gateway_message(ctx: ProvisionContext) -> str:
    return f"OpenClaw gateway running and accessible on port {ctx.gateway_port}"


USER_SERVICES = Phase(
    name="user-services",
    title="Enabling systemd user services",
    probe=user_services_ready,
    apply=enable_user_services,
    verify=_runtime_wired,
    diagnostic="User runtime directory or XDG_RUNTIME_DIR wiring is missing",
    satisfied_message=lambda ctx: f"Systemd user services already enabled (UID: {ctx.uid})",
    applied_message=lambda ctx: f"Systemd user services enabled (UID: {ctx.uid})",
)

ONBOARDING = Phase(
    name="onboarding",
    title="Checking OpenClaw onboarding",
    probe=onboarding_settled,
    apply=run_onboarding,
    verify=onboarding_complete,
    diagnostic="OpenClaw onboarding failed - no config file was created",
    satisfied_message=_onboarding_settled_message,
    applied_message="OpenClaw onboarding completed",
)

VPS_DEFAULTS = Phase(
    name="vps-defaults",
    title="Applying VPS-friendly configuration defaults",
    probe=vps_defaults_applied,
    apply=apply_vps_defaults,
    verify=vps_defaults_applied,
    diagnostic="OpenClaw config still lacks headless browser defaults after patching",
    satisfied_message=_vps_defaults_settled_message,
    applied_message="VPS configuration applied (gateway will restart)",
)

CREDENTIAL_PERMISSIONS = Phase(
    name="credential-permissions",
    title="Securing OpenClaw credentials",
    probe=credentials_secured,
    apply=secure_credentials,
    verify=credentials_secured,
    diagnostic="OpenClaw config permissions are still wider than owner-only",
    satisfied_message=_credentials_settled_message,
    applied_message="Credential permissions secured",
)

GATEWAY = Phase(
    name="gateway",
    title="Starting OpenClaw gateway",
    probe=never,
    apply=start_gateway,
    verify=always,
    diagnostic="OpenClaw gateway did not start",
    applied_message=_gateway_message,
    advisory=True,
)

from __future__ import annotations

import re
from pathlib import Path

from clawvps.config import TAILSCALE_CGNAT_RANGE, TAILSCALE_UDP_PORT
from clawvps.context import ProvisionContext
from clawvps.errors import InstallationError, PhaseDeferred
from clawvps.io_utils import read_text_or_empty
from clawvps.phases import Phase, hardened_only
from clawvps.system import SystemRunner

SSH_PORT_RULE = "22/tcp"
TAILSCALE_PORT_RULE = f"{TAILSCALE_UDP_PORT}/udp"

FAIL2BAN_JAIL = Path("/etc/fail2ban/jail.local")
FAIL2BAN_JAIL_TEMPLATE = """[DEFAULT]
bantime = 1h
findtime = 10m
maxretry = 3
destemail = root@localhost
sendername = Fail2Ban
action = %(action_mwl)s

[sshd]
enabled = true
port = ssh
filter = sshd
logpath = /var/log/auth.log
maxretry = 3
bantime = 1h
"""

SSHD_CONFIG = Path("/etc/ssh/sshd_config")
SSHD_CONFIG_BACKUP = Path("/etc/ssh/sshd_config.backup")
ROOT_SSH_DIR = Path("/root/.ssh")


def sshd_template(account: str) -> str:
    return f"""# Security-hardened SSH configuration
Port 22
Protocol 2
PermitRootLogin no
PasswordAuthentication no
PermitEmptyPasswords no
ChallengeResponseAuthentication no
UsePAM yes
X11Forwarding no
MaxAuthTries 3
LoginGraceTime 30s
ClientAliveInterval 300
ClientAliveCountMax 2
AllowUsers {account} root
UseDNS yes
"""


# ufw


def ufw_status(runner: SystemRunner) -> str:
    return runner.output(["ufw", "status"], sudo=True)


def ufw_active(status: str) -> bool:
    return "Status: active" in status


def ufw_rules(status: str) -> list[tuple[str, str, str]]:
    """Parse ``ufw status`` rows into (to, action, from) triples."""
    rules: list[tuple[str, str, str]] = []
    in_table = False
    for raw in status.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("--"):
            in_table = True
            continue
        if not in_table:
            continue
        columns = re.split(r"\s{2,}", line)
        if len(columns) >= 3:
            rules.append((columns[0], columns[1], columns[2]))
    return rules


def _has_rule(rules: list[tuple[str, str, str]], target: str, *, source: str | None = None) -> bool:
    for to, action, src in rules:
        if to.split()[0] != target or not action.startswith("ALLOW"):
            continue
        if source is None or src.startswith(source):
            return True
    return False


def firewall_configured(ctx: ProvisionContext) -> bool:
    status = ufw_status(ctx.runner)
    if not ufw_active(status):
        return False
    rules = ufw_rules(status)
    return _has_rule(rules, SSH_PORT_RULE) and _has_rule(rules, TAILSCALE_PORT_RULE)


def configure_firewall(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    if not runner.has_command("ufw"):
        runner.apt_install(["ufw"])
    status = ufw_status(runner)
    if not ufw_active(status):
        runner.run(["ufw", "--force", "reset"], sudo=True)
        runner.run(["ufw", "default", "deny", "incoming"], sudo=True)
        runner.run(["ufw", "default", "allow", "outgoing"], sudo=True)
        status = ""
    rules = ufw_rules(status)
    # A tailscale-only SSH rule still counts; never widen it back to public.
    if not _has_rule(rules, SSH_PORT_RULE):
        runner.run(["ufw", "allow", SSH_PORT_RULE], sudo=True)
    if not _has_rule(rules, TAILSCALE_PORT_RULE):
        runner.run(["ufw", "allow", TAILSCALE_PORT_RULE], sudo=True)
    runner.run(["ufw", "--force", "enable"], sudo=True)


# fail2ban


def fail2ban_present(ctx: ProvisionContext) -> bool:
    return ctx.runner.has_command("fail2ban-server")


def install_fail2ban(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    runner.apt_install(["fail2ban"])
    runner.write_root_file(FAIL2BAN_JAIL, FAIL2BAN_JAIL_TEMPLATE, mode=0o644)
    runner.run(["systemctl", "enable", "--now", "fail2ban"], sudo=True)


# ssh-hardening


def _has_private_keys(ssh_dir: Path) -> bool:
    try:
        return any(ssh_dir.glob("id_*"))
    except OSError:
        return False


def ssh_credentials_present(home: Path) -> bool:
    """True if key-based login is available, so passwords can be disabled."""
    ssh_dir = home / ".ssh"
    if _has_private_keys(ssh_dir) or _has_private_keys(ROOT_SSH_DIR):
        return True
    try:
        return (ssh_dir / "authorized_keys").stat().st_size > 0
    except OSError:
        return False


def ssh_hardened(ctx: ProvisionContext) -> bool:
    return read_text_or_empty(SSHD_CONFIG) == sshd_template(ctx.account)


def harden_ssh(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    reporter = ctx.reporter
    if not ssh_credentials_present(ctx.home):
        raise PhaseDeferred(
            "No SSH keys found! Skipping SSH hardening to avoid lockout.",
            title="SSH HARDENING SKIPPED",
            remediation=(
                "ssh-keygen -t ed25519",
                f"ssh-copy-id {ctx.account}@your-server",
                "clawvps install --hardened",
            ),
        )

    if not SSHD_CONFIG_BACKUP.exists():
        runner.run(["cp", str(SSHD_CONFIG), str(SSHD_CONFIG_BACKUP)], sudo=True)
        reporter.info(f"Backed up SSH config to {SSHD_CONFIG_BACKUP}")

    runner.write_root_file(SSHD_CONFIG, sshd_template(ctx.account))
    check = runner.run(["sshd", "-t"], sudo=True, check=False)
    if check.returncode != 0:
        runner.run(["cp", str(SSHD_CONFIG_BACKUP), str(SSHD_CONFIG)], sudo=True)
        raise InstallationError("SSH config test failed, restored backup")
    runner.run(["systemctl", "reload", "sshd"], sudo=True)


# tailscale-only


def hardened_interactive(ctx: ProvisionContext) -> bool:
    return ctx.hardened and ctx.interactive


def tailscale_only_active(ctx: ProvisionContext) -> bool:
    status = ufw_status(ctx.runner)
    if not ufw_active(status):
        return False
    rules = ufw_rules(status)
    public_ssh = any(
        to.split()[0] == SSH_PORT_RULE and src.startswith("Anywhere") for to, _action, src in rules
    )
    return (
        not public_ssh
        and _has_rule(rules, SSH_PORT_RULE, source=TAILSCALE_CGNAT_RANGE)
        and _has_rule(rules, f"{ctx.gateway_port}/tcp", source=TAILSCALE_CGNAT_RANGE)
    )


def restrict_to_tailscale(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    reporter = ctx.reporter
    if not runner.succeeds(["tailscale", "status"], sudo=True):
        raise PhaseDeferred(
            "Tailscale not authenticated yet; SSH stays publicly reachable.",
            title="TAILSCALE-ONLY ACCESS NOT CONFIGURED",
            remediation=("sudo tailscale up", "clawvps install --hardened"),
        )
    addresses = runner.output(["tailscale", "ip", "-4"], sudo=True)
    if not addresses:
        raise PhaseDeferred("No Tailscale IPs found", title="TAILSCALE-ONLY ACCESS NOT CONFIGURED")

    reporter.say("Restrict SSH and gateway access to Tailscale network only.")
    reporter.say("This blocks public internet access to these services.")
    reporter.say("")
    reporter.say(f"Current Tailscale IPs: {' '.join(addresses.split())}")
    reporter.say("")
    reporter.say("This will:")
    reporter.say(f"  • Remove public SSH access ({SSH_PORT_RULE} from any)")
    reporter.say(f"  • Allow SSH only from Tailscale network ({TAILSCALE_CGNAT_RANGE})")
    reporter.say(f"  • Allow gateway ({ctx.gateway_port}) only from Tailscale network")
    if not reporter.confirm("Enable Tailscale-only access?"):
        raise PhaseDeferred(
            "Skipped Tailscale-only configuration; SSH stays publicly reachable.",
            title="TAILSCALE-ONLY ACCESS NOT CONFIGURED",
        )

    runner.run(["ufw", "delete", "allow", SSH_PORT_RULE], sudo=True, check=False)
    for port in (22, ctx.gateway_port):
        runner.run(
            ["ufw", "allow", "from", TAILSCALE_CGNAT_RANGE, "to", "any", "port", str(port), "proto", "tcp"],
            sudo=True,
        )
    runner.run(["ufw", "reload"], sudo=True)


FIREWALL = Phase(
    name="firewall",
    title="Configuring UFW firewall",
    probe=firewall_configured,
    apply=configure_firewall,
    verify=firewall_configured,
    diagnostic="UFW firewall is not active",
    satisfied_message="Firewall already configured and enabled",
    applied_message="Firewall configured and enabled",
)

FAIL2BAN = Phase(
    name="fail2ban",
    title="Installing Fail2ban for brute-force protection",
    probe=fail2ban_present,
    apply=install_fail2ban,
    verify=fail2ban_present,
    diagnostic="Fail2ban installation failed - fail2ban-server not found",
    satisfied_message="Fail2ban already installed",
    applied_message="Fail2ban installed (3 failed attempts = 1hr ban)",
)

SSH_HARDENING = Phase(
    name="ssh-hardening",
    title="Hardening SSH configuration",
    probe=ssh_hardened,
    apply=harden_ssh,
    verify=ssh_hardened,
    diagnostic=f"Hardened SSH configuration was not written to {SSHD_CONFIG}",
    satisfied_message="SSH already hardened",
    applied_message="SSH hardened (key-only auth, no root login)",
    enabled=hardened_only,
)

TAILSCALE_ONLY = Phase(
    name="tailscale-only",
    title="Restricting access to Tailscale",
    probe=tailscale_only_active,
    apply=restrict_to_tailscale,
    verify=tailscale_only_active,
    diagnostic="Tailscale-only firewall rules are not active",
    satisfied_message="SSH and gateway already Tailscale-only",
    applied_message="SSH and gateway now Tailscale-only",
    enabled=hardened_interactive,
    advisory=True,
)

from __future__ import annotations

import re
import tempfile
from pathlib import Path

from clawvps.context import ProvisionContext
from clawvps.errors import InstallationError
from clawvps.io_utils import append_block_once, read_text_or_empty
from clawvps.phases import Phase
from clawvps.system import APT_ENV, SystemRunner

ESSENTIAL_PACKAGES = (
    "curl",
    "wget",
    "gnupg",
    "lsb-release",
    "ca-certificates",
    "iputils-ping",
    "git",
    "make",
    "unzip",
    "zip",
    "jq",
)

TAILSCALE_KEYRING = "/usr/share/keyrings/tailscale-archive-keyring.gpg"
TAILSCALE_LIST = "/etc/apt/sources.list.d/tailscale.list"
NODESOURCE_KEY_URL = "https://deb.nodesource.com/gpgkey/nodesource-repo.gpg.key"
NODESOURCE_KEYRING = "/etc/apt/keyrings/nodesource.gpg"
NODESOURCE_LIST = "/etc/apt/sources.list.d/nodesource.list"
CHROME_BINARY = Path("/opt/google/chrome/google-chrome")
CHROME_DEB_URL = "https://dl.google.com/linux/direct/google-chrome-stable_current_amd64.deb"
CHROMIUM_SHIM = "/usr/bin/chromium-browser"
HOMEBREW_INSTALL_URL = "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
HOMEBREW_PREFIX = Path("/home/linuxbrew/.linuxbrew")
HOMEBREW_SHELLENV = 'eval "$(/home/linuxbrew/.linuxbrew/bin/brew shellenv bash)"'

_VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")


def first_line(runner: SystemRunner, args: list[str]) -> str:
    text = runner.output(args)
    return text.splitlines()[0].strip() if text else ""


def install_apt_source(
    runner: SystemRunner,
    *,
    key_url: str,
    keyring: str,
    source_line: str,
    list_file: str,
) -> None:
    """Import a dearmored signing key and register a signed-by apt source."""
    with tempfile.TemporaryDirectory(prefix="clawvps-key-") as tmp:
        armored = Path(tmp) / "key.asc"
        dearmored = Path(tmp) / "keyring.gpg"
        runner.run(["curl", "-fsSL", key_url, "-o", str(armored)])
        runner.run(["gpg", "--batch", "--yes", "--dearmor", "-o", str(dearmored), str(armored)])
        if not dearmored.exists() or dearmored.stat().st_size == 0:
            raise InstallationError(f"Error: Signing keyring is empty after download: {key_url}")
        runner.run(["mkdir", "-p", str(Path(keyring).parent)], sudo=True)
        runner.run(["install", "-m", "644", str(dearmored), keyring], sudo=True)
    runner.write_root_file(list_file, source_line + "\n", mode=0o644)


# system-packages


def _installed_packages(runner: SystemRunner, packages: tuple[str, ...]) -> set[str]:
    listing = runner.output(["dpkg-query", "-W", "-f=${Package} ${Status}\\n", *packages])
    installed: set[str] = set()
    for line in listing.splitlines():
        name, _, status = line.partition(" ")
        if status.strip() == "install ok installed":
            installed.add(name.split(":", 1)[0])
    return installed


def essentials_present(ctx: ProvisionContext) -> bool:
    return set(ESSENTIAL_PACKAGES) <= _installed_packages(ctx.runner, ESSENTIAL_PACKAGES)


def install_essentials(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    runner.apt_update()
    runner.run(["apt-get", "upgrade", "-y"], sudo=True, env_extra=APT_ENV)
    runner.apt_install(ESSENTIAL_PACKAGES)


# tailscale


def tailscale_present(ctx: ProvisionContext) -> bool:
    return ctx.runner.has_command("tailscale")


def install_tailscale(ctx: ProvisionContext) -> None:
    codename = ctx.os_release.codename
    if not codename:
        raise InstallationError("Error: Cannot determine the distribution codename for the Tailscale repository")
    distro = "debian" if ctx.os_release.id == "debian" else "ubuntu"
    base = f"https://pkgs.tailscale.com/stable/{distro}"
    ctx.reporter.info("Adding Tailscale repository...")
    install_apt_source(
        ctx.runner,
        key_url=f"{base}/{codename}.gpg",
        keyring=TAILSCALE_KEYRING,
        source_line=f"deb [signed-by={TAILSCALE_KEYRING}] {base} {codename} main",
        list_file=TAILSCALE_LIST,
    )
    ctx.runner.apt_update()
    ctx.runner.apt_install(["tailscale"])
    ctx.runner.run(["systemctl", "enable", "tailscale"], sudo=True, check=False)


def tailscale_version(ctx: ProvisionContext) -> str:
    return first_line(ctx.runner, ["tailscale", "version"])


# google-chrome


def chrome_present(_ctx: ProvisionContext) -> bool:
    return CHROME_BINARY.is_file()


def install_chrome(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    ctx.reporter.info("Downloading Google Chrome...")
    with tempfile.TemporaryDirectory(prefix="clawvps-chrome-") as tmp:
        deb = Path(tmp) / "google-chrome-stable_current_amd64.deb"
        runner.run(["curl", "-fL", CHROME_DEB_URL, "-o", str(deb)])
        ctx.reporter.info("Installing Google Chrome (this may take a few minutes)...")
        runner.apt_install([str(deb)])
    if CHROME_BINARY.is_file():
        runner.run(["ln", "-sf", str(CHROME_BINARY), CHROMIUM_SHIM], sudo=True)
        ctx.reporter.info(f"Created symlink: {CHROMIUM_SHIM} -> google-chrome")


def chrome_version(ctx: ProvisionContext) -> str:
    return first_line(ctx.runner, [str(CHROME_BINARY), "--version"])


# nodejs


def node_major(runner: SystemRunner) -> int | None:
    raw = runner.output(["node", "--version"]).lstrip("v")
    head = raw.split(".", 1)[0]
    return int(head) if head.isdigit() else None


def node_current(ctx: ProvisionContext) -> bool:
    major = node_major(ctx.runner)
    return major is not None and major >= ctx.node_version_required


def install_node(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    required = ctx.node_version_required
    runner.run(["apt-get", "remove", "-y", "nodejs", "npm", "libnode-dev"], sudo=True, check=False, env_extra=APT_ENV)
    runner.run(["rm", "-f", NODESOURCE_LIST, NODESOURCE_KEYRING], sudo=True)
    install_apt_source(
        runner,
        key_url=NODESOURCE_KEY_URL,
        keyring=NODESOURCE_KEYRING,
        source_line=f"deb [signed-by={NODESOURCE_KEYRING}] https://deb.nodesource.com/node_{required}.x nodistro main",
        list_file=NODESOURCE_LIST,
    )
    runner.apt_update()
    runner.apt_install(["nodejs"])
    ctx.reporter.info("Upgrading npm...")
    runner.run(["npm", "install", "-g", "npm@latest"], check=False)


def node_ready(ctx: ProvisionContext) -> bool:
    return node_current(ctx) and ctx.runner.has_command("npm")


def node_message(ctx: ProvisionContext) -> str:
    node = ctx.runner.output(["node", "--version"])
    npm = ctx.runner.output(["npm", "--version"])
    return f"Node.js {node} and npm {npm} installed"


# homebrew


def _expose_brew(ctx: ProvisionContext) -> None:
    if (HOMEBREW_PREFIX / "bin" / "brew").exists():
        ctx.runner.prepend_path(HOMEBREW_PREFIX / "sbin")
        ctx.runner.prepend_path(HOMEBREW_PREFIX / "bin")


def homebrew_present(ctx: ProvisionContext) -> bool:
    _expose_brew(ctx)
    return ctx.runner.has_command("brew") and "brew shellenv" in read_text_or_empty(ctx.bashrc)


def install_homebrew(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    if not runner.has_command("brew"):
        script = runner.run(["curl", "-fsSL", HOMEBREW_INSTALL_URL]).stdout
        runner.run(["/bin/bash", "-c", script], env_extra={"NONINTERACTIVE": "1"})
        _expose_brew(ctx)
    append_block_once(ctx.bashrc, "brew shellenv", ["# Homebrew", HOMEBREW_SHELLENV])


def homebrew_message(ctx: ProvisionContext) -> str:
    return f"Homebrew installed ({first_line(ctx.runner, ['brew', '--version'])})"


# go


def go_present(ctx: ProvisionContext) -> bool:
    return ctx.runner.has_command("go")


def install_go(ctx: ProvisionContext) -> None:
    ctx.runner.apt_install(["golang-go"])


def go_version(ctx: ProvisionContext) -> str:
    parts = ctx.runner.output(["go", "version"]).split()
    return parts[2] if len(parts) > 2 else ""


# openclaw


def openclaw_present(ctx: ProvisionContext) -> bool:
    return ctx.runner.has_command("openclaw")


def install_openclaw(ctx: ProvisionContext) -> None:
    runner = ctx.runner
    ctx.config_dir.mkdir(parents=True, exist_ok=True)
    ctx.local_bin.mkdir(parents=True, exist_ok=True)
    if not runner.has_command("npm"):
        raise InstallationError("npm is not available. Node.js installation may have failed.")
    prefix = str(ctx.home / ".local")
    if prefix not in runner.output(["npm", "config", "get", "prefix"]):
        runner.run(["npm", "config", "set", "prefix", prefix])
    ctx.reporter.info("Running: npm install -g openclaw@latest")
    runner.run(["npm", "install", "-g", "openclaw@latest"])


def openclaw_version(runner: SystemRunner) -> str:
    match = _VERSION_RE.search(runner.output(["openclaw", "--version"]))
    return match.group(0) if match else "unknown"


SYSTEM_PACKAGES = Phase(
    name="system-packages",
    title="Updating system packages",
    probe=essentials_present,
    apply=install_essentials,
    verify=essentials_present,
    diagnostic="Essential system packages are still missing after apt install",
    satisfied_message="Essential packages already installed",
    applied_message="System updated and essential packages installed",
)

TAILSCALE = Phase(
    name="tailscale",
    title="Installing Tailscale",
    probe=tailscale_present,
    apply=install_tailscale,
    verify=tailscale_present,
    diagnostic="Tailscale installation failed - command not found",
    satisfied_message=lambda ctx: f"Tailscale already installed ({tailscale_version(ctx)})",
    applied_message=lambda ctx: f"Tailscale installed ({tailscale_version(ctx)})",
)

GOOGLE_CHROME = Phase(
    name="google-chrome",
    title="Installing Google Chrome for browser automation",
    probe=chrome_present,
    apply=install_chrome,
    verify=chrome_present,
    diagnostic=f"Google Chrome installation failed - {CHROME_BINARY} not found",
    satisfied_message="Google Chrome already installed",
    applied_message=lambda ctx: f"Google Chrome installed ({chrome_version(ctx)})",
)

NODEJS = Phase(
    name="nodejs",
    title="Installing Node.js",
    probe=node_current,
    apply=install_node,
    verify=node_ready,
    diagnostic="Node.js installation failed - node or npm not found at the required version",
    satisfied_message=lambda ctx: f"Node.js {ctx.runner.output(['node', '--version'])} already installed",
    applied_message=node_message,
)

HOMEBREW = Phase(
    name="homebrew",
    title="Installing Homebrew for Linux",
    probe=homebrew_present,
    apply=install_homebrew,
    verify=homebrew_present,
    diagnostic="Homebrew installation failed - command not found",
    satisfied_message=lambda ctx: f"Homebrew already installed ({first_line(ctx.runner, ['brew', '--version'])})",
    applied_message=homebrew_message,
)

GO = Phase(
    name="go",
    title="Installing Go",
    probe=go_present,
    apply=install_go,
    verify=go_present,
    diagnostic="Go installation failed - command not found",
    satisfied_message=lambda ctx: f"Go already installed ({go_version(ctx)})",
    applied_message=lambda ctx: f"Go {go_version(ctx)} installed",
)

OPENCLAW = Phase(
    name="openclaw",
    title="Installing OpenClaw",
    probe=openclaw_present,
    apply=install_openclaw,
    verify=openclaw_present,
    diagnostic="OpenClaw installation failed - command not found",
    satisfied_message=lambda ctx: f"OpenClaw {openclaw_version(ctx.runner)} already installed",
    applied_message=lambda ctx: f"OpenClaw {openclaw_version(ctx.runner)} installed",
)

from __future__ import annotations

import getpass
import os
from dataclasses import dataclass, field
from pathlib import Path

from clawvps import config, paths
from clawvps.reporter import Reporter
from clawvps.system import SystemRunner


@dataclass(frozen=True)
class OsRelease:
    id: str = ""
    version_id: str = ""
    codename: str = ""
    pretty_name: str = ""

    @classmethod
    def parse(cls, text: str) -> "OsRelease":
        data: dict[str, str] = {}
        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            data[key.strip()] = value.strip().strip("\"'")
        return cls(
            id=data.get("ID", ""),
            version_id=data.get("VERSION_ID", ""),
            codename=data.get("VERSION_CODENAME", "") or data.get("UBUNTU_CODENAME", ""),
            pretty_name=data.get("PRETTY_NAME", ""),
        )


@dataclass(frozen=True)
class ProvisionContext:
    """Everything a phase reads. Never mutated; use dataclasses.replace."""

    runner: SystemRunner
    reporter: Reporter
    user: str
    uid: int
    home: Path
    account: str
    hardened: bool = False
    interactive: bool = False
    gateway_port: int = config.DEFAULT_GATEWAY_PORT
    node_version_required: int = config.DEFAULT_NODE_VERSION_REQUIRED
    min_disk_space_gb: int = config.DEFAULT_MIN_DISK_SPACE_GB
    os_release: OsRelease = field(default_factory=OsRelease)
    gateway_was_running: bool = False

    @property
    def config_dir(self) -> Path:
        return paths.openclaw_dir(self.home)

    @property
    def config_file(self) -> Path:
        return paths.openclaw_config_file(self.home)

    @property
    def local_bin(self) -> Path:
        return paths.local_bin_dir(self.home)

    @property
    def bashrc(self) -> Path:
        return self.home / ".bashrc"

    @property
    def runtime_dir(self) -> Path:
        return paths.runtime_dir(self.uid)

    @property
    def gateway_url(self) -> str:
        return f"http://127.0.0.1:{self.gateway_port}"


def current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return str(os.getuid())


def build_context(
    runner: SystemRunner,
    reporter: Reporter,
    *,
    hardened: bool,
    interactive: bool,
) -> ProvisionContext:
    home = paths.home_dir()
    uid = os.getuid()
    ctx = ProvisionContext(
        runner=runner,
        reporter=reporter,
        user=current_user(),
        uid=uid,
        home=home,
        account=config.service_account(),
        hardened=hardened,
        interactive=interactive,
        gateway_port=config.gateway_port(),
        node_version_required=config.node_version_required(),
        min_disk_space_gb=config.min_disk_space_gb(),
    )
    runner.prepend_path(ctx.local_bin)
    runner.env["XDG_RUNTIME_DIR"] = str(ctx.runtime_dir)
    return ctx

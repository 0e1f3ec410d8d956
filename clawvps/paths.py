from __future__ import annotations

import os
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
HOME_ENV = "CLAWVPS_HOME"


def home_dir() -> Path:
    override = os.getenv(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home()


def openclaw_dir(home: Path) -> Path:
    return home / ".openclaw"


def openclaw_config_file(home: Path) -> Path:
    return openclaw_dir(home) / "openclaw.json"


def local_bin_dir(home: Path) -> Path:
    return home / ".local" / "bin"


def update_log_file(home: Path) -> Path:
    return openclaw_dir(home) / "update.log"


def update_cron_log_file(home: Path) -> Path:
    return openclaw_dir(home) / "update-cron.log"


def fallback_install_log_file(home: Path) -> Path:
    return openclaw_dir(home) / "install.log"


def runtime_dir(uid: int) -> Path:
    return Path("/run/user") / str(uid)


def account_home(account: str) -> Path:
    return Path("/home") / account


def has_source_tree(root: Path) -> bool:
    return (root / "pyproject.toml").is_file() and (root / "clawvps" / "__init__.py").is_file()


def locate_source_tree() -> Path | None:
    """Return the checkout this package runs from, or None when installed elsewhere."""
    if has_source_tree(PACKAGE_ROOT):
        return PACKAGE_ROOT
    return None

from __future__ import annotations

import copy
import json
import os
import shutil
from pathlib import Path
from typing import Any

from clawvps.config import BROWSER_CDP_PORT, BROWSER_PROFILE_COLOR, BROWSER_PROFILE_NAME
from clawvps.errors import InstallationError
from clawvps.io_utils import atomic_write_text, file_mode, read_text_or_empty

CONFIG_FILE_MODE = 0o600
CONFIG_DIR_MODE = 0o700


def default_browser_profile() -> dict[str, Any]:
    return {
        "cdpPort": BROWSER_CDP_PORT,
        "driver": BROWSER_PROFILE_NAME,
        "color": BROWSER_PROFILE_COLOR,
    }


def default_browser_block() -> dict[str, Any]:
    return {
        "enabled": True,
        "headless": True,
        "noSandbox": False,
        "defaultProfile": BROWSER_PROFILE_NAME,
        "profiles": {BROWSER_PROFILE_NAME: default_browser_profile()},
    }


def load_record(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    raw = read_text_or_empty(path)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InstallationError(f"Error: OpenClaw config is not valid JSON: {path}\n{exc}") from exc
    if not isinstance(payload, dict):
        raise InstallationError(f"Error: OpenClaw config must be a JSON object: {path}")
    return payload


def instance_id(path: Path) -> str:
    try:
        record = load_record(path)
    except InstallationError:
        return "unknown"
    if record is None:
        return "unknown"
    value = record.get("instanceId")
    return str(value) if value else "unknown"


def vps_default_changes(document: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Return (patched copy, change descriptions) for headless VPS operation.

    Only adds missing keys or flips ``browser.headless`` to true. Keys not
    named here are carried over untouched.
    """
    patched = copy.deepcopy(document)
    changes: list[str] = []

    browser = patched.get("browser")
    if not isinstance(browser, dict):
        patched["browser"] = default_browser_block()
        return patched, ["browser"]

    if browser.get("headless") is not True:
        browser["headless"] = True
        changes.append("browser.headless")

    if not browser.get("defaultProfile"):
        browser["defaultProfile"] = BROWSER_PROFILE_NAME
        changes.append("browser.defaultProfile")

    profiles = browser.get("profiles")
    if not isinstance(profiles, dict):
        browser["profiles"] = {BROWSER_PROFILE_NAME: default_browser_profile()}
        changes.append(f"browser.profiles.{BROWSER_PROFILE_NAME}")
    elif not profiles.get(BROWSER_PROFILE_NAME):
        profiles[BROWSER_PROFILE_NAME] = default_browser_profile()
        changes.append(f"browser.profiles.{BROWSER_PROFILE_NAME}")

    return patched, changes


def write_record(path: Path, document: dict[str, Any]) -> None:
    atomic_write_text(
        path,
        json.dumps(document, indent=2, ensure_ascii=False) + "\n",
        mode=CONFIG_FILE_MODE,
    )
    secure_permissions(path.parent, path)


def patch_vps_defaults(path: Path) -> list[str]:
    """Apply VPS browser defaults in place; returns the changed key paths."""
    record = load_record(path)
    if record is None:
        return []
    patched, changes = vps_default_changes(record)
    if changes:
        write_record(path, patched)
    return changes


def secure_permissions(config_dir: Path, config_file: Path) -> bool:
    """Tighten config dir, credentials dir and config file to owner-only.

    Returns True when a mode was changed.
    """
    changed = False
    targets = [
        (config_dir, CONFIG_DIR_MODE),
        (config_dir / "credentials", CONFIG_DIR_MODE),
        (config_file, CONFIG_FILE_MODE),
    ]
    for target, mode in targets:
        current = file_mode(target)
        if current is None or current == mode:
            continue
        os.chmod(target, mode)
        changed = True
    return changed


def permissions_secure(config_dir: Path, config_file: Path) -> bool:
    for target, mode in (
        (config_dir, CONFIG_DIR_MODE),
        (config_dir / "credentials", CONFIG_DIR_MODE),
        (config_file, CONFIG_FILE_MODE),
    ):
        current = file_mode(target)
        if current is not None and current != mode:
            return False
    return True


def reset_record(config_dir: Path, config_file: Path) -> None:
    """Delete the config and channel state (operator-confirmed re-onboarding only)."""
    config_file.unlink(missing_ok=True)
    shutil.rmtree(config_dir / "channels", ignore_errors=True)

from __future__ import annotations

from pathlib import Path

from clawvps import config, paths


def _seed_source_tree(root: Path) -> None:
    (root / "clawvps").mkdir(parents=True, exist_ok=True)
    (root / "clawvps" / "__init__.py").write_text("", encoding="utf-8")
    (root / "pyproject.toml").write_text("[project]\nname = 'clawvps'\n", encoding="utf-8")


def test_home_dir_uses_env_override(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv(paths.HOME_ENV, str(tmp_path / "override"))
    assert paths.home_dir() == tmp_path / "override"


def test_openclaw_paths_live_under_home(tmp_path: Path) -> None:
    assert paths.openclaw_config_file(tmp_path) == tmp_path / ".openclaw" / "openclaw.json"
    assert paths.update_log_file(tmp_path) == tmp_path / ".openclaw" / "update.log"
    assert paths.update_cron_log_file(tmp_path) == tmp_path / ".openclaw" / "update-cron.log"
    assert paths.local_bin_dir(tmp_path) == tmp_path / ".local" / "bin"
    assert paths.runtime_dir(1000) == Path("/run/user/1000")


def test_locate_source_tree_uses_checkout(tmp_path: Path, monkeypatch) -> None:
    _seed_source_tree(tmp_path / "checkout")
    monkeypatch.setattr(paths, "PACKAGE_ROOT", tmp_path / "checkout")
    assert paths.locate_source_tree() == tmp_path / "checkout"


def test_locate_source_tree_none_when_installed(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(paths, "PACKAGE_ROOT", tmp_path / "site-packages")
    assert paths.locate_source_tree() is None


def test_settings_resolve_env_then_file_then_default(tmp_path: Path, monkeypatch) -> None:
    settings = tmp_path / "settings.yml"
    settings.write_text(
        "gateway_port: 19000  # custom\nservice_account: 'agent'\nupdate_hour: 99\n",
        encoding="utf-8",
    )
    monkeypatch.setenv(config.SETTINGS_FILE_ENV, str(settings))
    monkeypatch.delenv("CLAWVPS_GATEWAY_PORT", raising=False)
    monkeypatch.delenv("CLAWVPS_SERVICE_ACCOUNT", raising=False)
    monkeypatch.delenv("CLAWVPS_UPDATE_HOUR", raising=False)
    monkeypatch.delenv("CLAWVPS_NODE_VERSION_REQUIRED", raising=False)

    assert config.gateway_port() == 19000
    assert config.service_account() == "agent"
    assert config.update_hour() == config.DEFAULT_UPDATE_HOUR
    assert config.node_version_required() == 22

    monkeypatch.setenv("CLAWVPS_GATEWAY_PORT", "18999")
    assert config.gateway_port() == 18999


def test_setting_int_ignores_garbage(monkeypatch) -> None:
    monkeypatch.setenv("CLAWVPS_MIN_DISK_SPACE_GB", "lots")
    assert config.min_disk_space_gb() == config.DEFAULT_MIN_DISK_SPACE_GB

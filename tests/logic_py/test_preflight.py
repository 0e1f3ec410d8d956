from __future__ import annotations

from pathlib import Path

import pytest

from clawvps import preflight
from clawvps.errors import EXIT_PREREQUISITE, PrerequisiteError
from clawvps.preflight import run_preflight
from conftest import FakeRunner, console_text, log_text

UBUNTU = 'PRETTY_NAME="Ubuntu 24.04.1 LTS"\nID=ubuntu\nVERSION_ID="24.04"\nVERSION_CODENAME=noble\n'


@pytest.fixture
def host(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, object]:
    state: dict[str, object] = {"free": 40, "online": True}
    os_release = tmp_path / "os-release"
    os_release.write_text(UBUNTU, encoding="utf-8")
    monkeypatch.setattr(preflight, "OS_RELEASE_FILE", os_release)
    monkeypatch.setattr(preflight, "free_space_gb", lambda path="/": state["free"])
    monkeypatch.setattr(preflight, "network_reachable", lambda *args, **kwargs: state["online"])
    state["os_release"] = os_release
    return state


def test_checks_pass_and_stop_running_gateway(make_ctx, fake_runner: FakeRunner, host) -> None:
    ctx = run_preflight(make_ctx())

    assert ctx.os_release.codename == "noble"
    assert ctx.gateway_was_running is True
    assert fake_runner.ran("systemctl", "--user", "stop", "openclaw-gateway")
    assert "Pre-install checks passed (ubuntu 24.04, 40GB free)" in log_text(ctx.reporter)


def test_stopped_gateway_is_left_stopped(make_ctx, fake_runner: FakeRunner, host) -> None:
    fake_runner.respond("systemctl", "--user", "is-active", returncode=3)
    ctx = run_preflight(make_ctx())
    assert ctx.gateway_was_running is False
    assert not fake_runner.ran("systemctl", "--user", "stop")


def test_missing_os_release(make_ctx, fake_runner: FakeRunner, host) -> None:
    Path(host["os_release"]).unlink()

    with pytest.raises(PrerequisiteError) as exc_info:
        run_preflight(make_ctx())

    assert exc_info.value.exit_code == EXIT_PREREQUISITE
    assert "Cannot detect OS version" in str(exc_info.value)
    assert fake_runner.calls == []


def test_low_disk_space_fails_before_mutation(make_ctx, fake_runner: FakeRunner, host) -> None:
    host["free"] = 1
    ctx = make_ctx()

    with pytest.raises(PrerequisiteError, match=r"Insufficient disk space\. Need 2GB, have 1GB"):
        run_preflight(ctx)

    assert not fake_runner.ran("systemctl", "--user", "stop")
    assert "STEP_FAILED: Insufficient disk space" in log_text(ctx.reporter)


def test_offline_host(make_ctx, fake_runner: FakeRunner, host) -> None:
    host["online"] = False
    with pytest.raises(PrerequisiteError, match="Internet connectivity check failed"):
        run_preflight(make_ctx())


def test_unsupported_distro_is_advisory(make_ctx, fake_runner: FakeRunner, host) -> None:
    Path(host["os_release"]).write_text('ID=fedora\nVERSION_ID=40\nPRETTY_NAME="Fedora Linux 40"\n', encoding="utf-8")
    ctx = make_ctx()

    result = run_preflight(ctx)

    assert result.os_release.id == "fedora"
    assert "UNSUPPORTED DISTRIBUTION" in console_text(ctx.reporter)

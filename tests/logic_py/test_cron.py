from __future__ import annotations

from pathlib import Path

import pytest

from clawvps import cron
from clawvps.cron import AUTO_UPDATE, cron_entry, has_update_entry
from clawvps.phases import run_phase
from conftest import FakeRunner


@pytest.fixture(autouse=True)
def fixed_command(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cron, "updater_command", lambda: "/usr/local/bin/clawvps update --quiet")


def test_entry_format(make_ctx, home: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLAWVPS_UPDATE_HOUR", "4")
    assert cron_entry(make_ctx()) == (
        f"0 4 * * * /usr/local/bin/clawvps update --quiet >> {home / '.openclaw' / 'update-cron.log'} 2>&1"
    )


def test_commented_entry_does_not_count() -> None:
    assert not has_update_entry("# 0 3 * * * clawvps update --quiet\n")
    assert has_update_entry("MAILTO=\n0 3 * * * /usr/bin/clawvps update --quiet >> /x 2>&1\n")


def test_entry_added_alongside_existing_jobs(make_ctx, fake_runner: FakeRunner) -> None:
    fake_runner.commands.add("crontab")
    fake_runner.respond("crontab", "-l", stdout="@reboot /usr/bin/backup\n")

    def saved(_cmd: list[str], text: str | None) -> None:
        fake_runner.respond("crontab", "-l", stdout=text or "")

    fake_runner.respond("crontab", "-", effect=saved)

    assert run_phase(AUTO_UPDATE, make_ctx()).status == "applied"
    written = fake_runner.inputs["crontab -"].splitlines()
    assert written[0] == "@reboot /usr/bin/backup"
    assert "clawvps update --quiet" in written[1]

    assert run_phase(AUTO_UPDATE, make_ctx()).status == "satisfied"
    assert fake_runner.count("crontab", "-") == 1


def test_no_crontab_for_user(make_ctx, fake_runner: FakeRunner) -> None:
    fake_runner.commands.add("crontab")
    fake_runner.respond("crontab", "-l", returncode=1, stderr="no crontab for openclaw")

    run_phase(AUTO_UPDATE, make_ctx())

    assert len(fake_runner.inputs["crontab -"].splitlines()) == 1


def test_missing_crontab_degrades(make_ctx, fake_runner: FakeRunner) -> None:
    fake_runner.respond("crontab", "-l", returncode=127)
    assert run_phase(AUTO_UPDATE, make_ctx()).status == "degraded"

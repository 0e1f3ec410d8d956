from __future__ import annotations

import pytest

from clawvps import health
from conftest import FakeRunner


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    slept: list[int] = []
    monkeypatch.setattr(health.time, "sleep", lambda seconds: slept.append(seconds))
    return slept


def test_wait_for_active_polls_until_timeout(fake_runner: FakeRunner, no_sleep: list[int]) -> None:
    fake_runner.respond("systemctl", "--user", "is-active", returncode=3)

    assert not health.wait_for_active(fake_runner, timeout_seconds=5, poll_seconds=1)
    assert no_sleep == [1, 1, 1, 1, 1]
    assert fake_runner.count("systemctl", "--user", "is-active") == 6


def test_wait_for_http_tries_health_then_root(monkeypatch: pytest.MonkeyPatch, no_sleep: list[int]) -> None:
    seen: list[str] = []

    def responds(url: str, **_kwargs: object) -> bool:
        seen.append(url)
        return url == "http://127.0.0.1:18789"

    monkeypatch.setattr(health, "http_responds", responds)

    assert health.wait_for_http("http://127.0.0.1:18789")
    assert seen == ["http://127.0.0.1:18789/health", "http://127.0.0.1:18789"]
    assert no_sleep == []


def test_wait_for_http_gives_up(monkeypatch: pytest.MonkeyPatch, no_sleep: list[int]) -> None:
    monkeypatch.setattr(health, "http_responds", lambda _url, **_kwargs: False)
    assert not health.wait_for_http("http://127.0.0.1:18789", attempts=3)
    assert no_sleep == [1, 1]


def test_port_listening_falls_back_to_netstat(fake_runner: FakeRunner) -> None:
    fake_runner.commands.add("netstat")
    fake_runner.respond("netstat", "-tlnp", stdout="tcp 0 0 127.0.0.1:18789 0.0.0.0:* LISTEN 42/node\n")

    assert health.port_listening(fake_runner, 18789)
    assert not health.port_listening(fake_runner, 18790)


def test_port_listening_without_tools(fake_runner: FakeRunner) -> None:
    assert not health.port_listening(fake_runner, 18789)
    assert fake_runner.calls == []


def test_check_gateway_report(monkeypatch: pytest.MonkeyPatch, fake_runner: FakeRunner) -> None:
    monkeypatch.setattr(health, "http_responds", lambda _url, **_kwargs: True)
    assert health.check_gateway(fake_runner, "http://127.0.0.1:18789", 18789) == health.HealthReport(
        active=True, ready=True, detected_by="http"
    )


def test_unreachable_url_is_not_responding() -> None:
    assert not health.http_responds("http://127.0.0.1:9/", timeout=0.2)

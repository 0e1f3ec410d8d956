from __future__ import annotations

from typing import Callable

import pytest

from clawvps.console import command_hint
from clawvps.context import ProvisionContext
from clawvps.errors import EXIT_INSTALLATION, InstallationError, PhaseDeferred
from clawvps.phases import Phase, hardened_only, run_phases
from clawvps.system import CommandError
from conftest import console_text, log_text


class FakeHost:
    """Dict-backed host state; ``broken`` names components whose install silently does nothing."""

    def __init__(self) -> None:
        self.installed: dict[str, bool] = {}
        self.applies: list[str] = []
        self.broken: set[str] = set()

    def phase(self, name: str, **overrides: object) -> Phase:
        def probe(_ctx: ProvisionContext) -> bool:
            return self.installed.get(name, False)

        def apply(_ctx: ProvisionContext) -> None:
            self.applies.append(name)
            if name not in self.broken:
                self.installed[name] = True

        values: dict[str, object] = {
            "name": name,
            "title": f"Installing {name}",
            "probe": probe,
            "apply": apply,
            "verify": probe,
            "diagnostic": f"{name} installation failed",
        }
        values.update(overrides)
        return Phase(**values)  # type: ignore[arg-type]


def _raiser(exc: Exception) -> Callable[[ProvisionContext], None]:
    def apply(_ctx: ProvisionContext) -> None:
        raise exc

    return apply


def test_second_run_mutates_nothing(make_ctx) -> None:
    host = FakeHost()
    phases = [host.phase(name) for name in ("packages", "node", "openclaw")]

    first = run_phases(phases, make_ctx())
    assert [r.status for r in first] == ["applied", "applied", "applied"]

    host.applies.clear()
    second = run_phases(phases, make_ctx())
    assert [r.status for r in second] == ["satisfied", "satisfied", "satisfied"]
    assert host.applies == []


def test_failed_phase_halts_and_rerun_resumes_there(make_ctx) -> None:
    host = FakeHost()
    host.broken.add("go")
    phases = [host.phase(name) for name in ("packages", "node", "go", "openclaw")]
    ctx = make_ctx()

    with pytest.raises(InstallationError) as exc_info:
        run_phases(phases, ctx)

    assert exc_info.value.exit_code == EXIT_INSTALLATION
    assert "go installation failed" in str(exc_info.value)
    assert host.installed == {"packages": True, "node": True}
    assert "openclaw" not in host.applies
    assert "STEP_FAILED: go installation failed" in log_text(ctx.reporter)

    host.broken.clear()
    host.applies.clear()
    results = run_phases(phases, ctx)
    assert host.applies == ["go", "openclaw"]
    assert [r.status for r in results] == ["satisfied", "satisfied", "applied", "applied"]


def test_deferred_phase_does_not_stop_pipeline(make_ctx) -> None:
    host = FakeHost()
    deferred = host.phase(
        "ssh",
        apply=_raiser(PhaseDeferred("no keys", title="SSH HARDENING SKIPPED", remediation=("ssh-copy-id",))),
    )
    phases = [deferred, host.phase("chrome")]
    ctx = make_ctx()

    results = run_phases(phases, ctx)

    assert [(r.name, r.status) for r in results] == [("ssh", "deferred"), ("chrome", "applied")]
    assert "SSH HARDENING SKIPPED" in console_text(ctx.reporter)
    assert command_hint("ssh-copy-id") in console_text(ctx.reporter)


def test_advisory_phase_degrades_instead_of_failing(make_ctx) -> None:
    host = FakeHost()
    host.broken.add("gateway")
    phases = [host.phase("gateway", advisory=True), host.phase("cron")]
    ctx = make_ctx()

    results = run_phases(phases, ctx)

    assert results[0].status == "degraded"
    assert results[1].status == "applied"
    assert "INSTALLING GATEWAY INCOMPLETE" in console_text(ctx.reporter)


def test_command_error_is_wrapped_with_diagnostic(make_ctx) -> None:
    host = FakeHost()
    phase = host.phase("go", apply=_raiser(CommandError("Error: Command failed (exit 100): apt-get install -y golang-go")))

    with pytest.raises(InstallationError) as exc_info:
        run_phases([phase], make_ctx())

    message = str(exc_info.value)
    assert message.startswith("go installation failed")
    assert "apt-get install -y golang-go" in message
    assert isinstance(exc_info.value.__cause__, CommandError)


def test_disabled_phase_is_skipped(make_ctx) -> None:
    host = FakeHost()
    phases = [host.phase("ssh", enabled=hardened_only)]

    assert [r.status for r in run_phases(phases, make_ctx(hardened=False))] == ["skipped"]
    assert host.applies == []
    assert [r.status for r in run_phases(phases, make_ctx(hardened=True))] == ["applied"]


def test_messages_can_be_rendered_from_context(make_ctx) -> None:
    host = FakeHost()
    host.installed["go"] = True
    phase = host.phase("go", satisfied_message=lambda ctx: f"Go present for {ctx.user}")
    ctx = make_ctx()

    results = run_phases([phase], ctx)

    assert results[0].message == "Go present for openclaw"
    assert "STEP_COMPLETE: Go present for openclaw" in log_text(ctx.reporter)

"""Ordered, idempotent provisioning phases.

Each phase is a record of three predicates/actions over a ProvisionContext:

  probe   -> is the end state already true? (then nothing is mutated)
  apply   -> perform the install/config mutation
  verify  -> re-probe; a False result halts the pipeline with the phase's
             diagnostic (exit 3) unless the phase is advisory

Phase state is never persisted: every run re-derives it from the live host.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal, Sequence, Union

from clawvps.context import ProvisionContext
from clawvps.errors import InstallationError, PhaseDeferred, ProvisionError
from clawvps.system import CommandError

PhaseStatus = Literal["satisfied", "applied", "deferred", "skipped", "degraded"]
Message = Union[str, Callable[[ProvisionContext], str]]


def always(_ctx: ProvisionContext) -> bool:
    return True


def never(_ctx: ProvisionContext) -> bool:
    return False


def hardened_only(ctx: ProvisionContext) -> bool:
    return ctx.hardened


@dataclass(frozen=True)
class PhaseResult:
    name: str
    status: PhaseStatus
    message: str = ""


@dataclass(frozen=True)
class Phase:
    name: str
    title: str
    probe: Callable[[ProvisionContext], bool]
    apply: Callable[[ProvisionContext], None]
    verify: Callable[[ProvisionContext], bool]
    diagnostic: str
    satisfied_message: Message = ""
    applied_message: Message = ""
    enabled: Callable[[ProvisionContext], bool] = always
    advisory: bool = False


def _render(message: Message, ctx: ProvisionContext, fallback: str) -> str:
    if callable(message):
        try:
            rendered = message(ctx)
        except (CommandError, OSError):
            rendered = ""
        return rendered or fallback
    return message or fallback


def run_phase(phase: Phase, ctx: ProvisionContext) -> PhaseResult:
    reporter = ctx.reporter
    if not phase.enabled(ctx):
        reporter.debug(f"Phase {phase.name} not enabled for this run")
        return PhaseResult(phase.name, "skipped")

    reporter.step(phase.title)
    try:
        if phase.probe(ctx):
            message = _render(phase.satisfied_message, ctx, f"{phase.title}: already satisfied")
            reporter.done(message)
            return PhaseResult(phase.name, "satisfied", message)

        phase.apply(ctx)
        if not phase.verify(ctx):
            raise InstallationError(phase.diagnostic)
    except PhaseDeferred as exc:
        title = exc.title or f"{phase.title.upper()} SKIPPED"
        reporter.advisory(title, exc.reason, exc.remediation)
        return PhaseResult(phase.name, "deferred", exc.reason)
    except (ProvisionError, CommandError) as exc:
        if phase.advisory:
            reporter.advisory(f"{phase.title.upper()} INCOMPLETE", str(exc))
            return PhaseResult(phase.name, "degraded", str(exc))
        if isinstance(exc, CommandError):
            wrapped = InstallationError(f"{phase.diagnostic}\n{exc}")
            reporter.failed(phase.diagnostic)
            raise wrapped from exc
        reporter.failed(str(exc))
        raise

    message = _render(phase.applied_message, ctx, f"{phase.title}: done")
    reporter.done(message)
    return PhaseResult(phase.name, "applied", message)


def run_phases(phases: Sequence[Phase], ctx: ProvisionContext) -> list[PhaseResult]:
    """Run phases in order; the first fatal failure propagates and halts the chain."""
    results: list[PhaseResult] = []
    for phase in phases:
        results.append(run_phase(phase, ctx))
    return results

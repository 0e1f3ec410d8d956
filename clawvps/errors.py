from __future__ import annotations

import subprocess
import sys
import traceback
from pathlib import Path
from typing import Callable

from clawvps.system import CommandError

EXIT_GENERAL = 1
EXIT_PREREQUISITE = 2
EXIT_INSTALLATION = 3
EXIT_INTERRUPTED = 130


class UserFacingError(RuntimeError):
    """Error with user-facing text; caller should print and return non-zero."""


class ProvisionError(UserFacingError):
    exit_code = EXIT_GENERAL

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class PrerequisiteError(ProvisionError):
    """A pre-condition of the pipeline does not hold (OS, disk, network)."""

    exit_code = EXIT_PREREQUISITE


class InstallationError(ProvisionError):
    """A phase ran but its post-condition does not hold."""

    exit_code = EXIT_INSTALLATION


class PhaseDeferred(Exception):
    """Raised by a phase that chose not to act; the pipeline continues with a warning."""

    def __init__(self, reason: str, *, title: str = "", remediation: tuple[str, ...] = ()) -> None:
        super().__init__(reason)
        self.reason = reason
        self.title = title
        self.remediation = remediation


def failure_location(exc: BaseException) -> str:
    frames = traceback.extract_tb(exc.__traceback__)
    if not frames:
        return "unknown location"
    last = frames[-1]
    return f"{Path(last.filename).name}:{last.lineno}"


def main_guard(fn: Callable[[], int | None], *, on_fatal: Callable[[str, int], None] | None = None) -> None:
    """Run fn and convert known errors to CLI output/exit code.

    on_fatal receives (message, exit_code) so the caller can log the failure
    and print its banner before the process exits.
    """

    def _fatal(message: str, code: int, exc: BaseException) -> None:
        if on_fatal is not None:
            on_fatal(message, code)
        else:
            print(message, file=sys.stderr)
        raise SystemExit(code) from exc

    try:
        code = fn()
    except KeyboardInterrupt as exc:
        _fatal("Interrupted.", EXIT_INTERRUPTED, exc)
    except ProvisionError as exc:
        _fatal(str(exc), exc.exit_code, exc)
    except (UserFacingError, CommandError) as exc:
        _fatal(str(exc), EXIT_GENERAL, exc)
    except FileNotFoundError as exc:
        _fatal(f"Error: Command not found: {exc.filename or 'unknown'}", EXIT_GENERAL, exc)
    except subprocess.SubprocessError as exc:
        _fatal(f"Error: Command execution failed: {exc}", EXIT_GENERAL, exc)
    except OSError as exc:
        _fatal(f"Error: OS command failure: {exc}", EXIT_GENERAL, exc)
    except Exception as exc:
        _fatal(
            f"Error: Unexpected failure at {failure_location(exc)}: {type(exc).__name__}: {exc}",
            EXIT_GENERAL,
            exc,
        )
    if code:
        raise SystemExit(code)

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Sequence, TextIO

from clawvps.console import C, banner, command_hint
from clawvps.logs import LogSink


class Reporter:
    """Log sink plus human-readable console progress.

    ``quiet`` suppresses console output; the log file is still written.
    ``echo_log`` mirrors plain log events to the console (updater style).
    """

    def __init__(
        self,
        sink: LogSink | None,
        *,
        quiet: bool = False,
        echo_log: bool = False,
        stream: TextIO | None = None,
        err_stream: TextIO | None = None,
        input_fn: Callable[[str], str] = input,
    ) -> None:
        self.sink = sink
        self.quiet = quiet
        self.echo_log = echo_log
        self._stream = stream
        self._err_stream = err_stream
        self._input = input_fn

    @property
    def out(self) -> TextIO:
        return self._stream or sys.stdout

    @property
    def err(self) -> TextIO:
        return self._err_stream or sys.stderr

    @property
    def log_path(self) -> Path | None:
        return self.sink.path if self.sink is not None else None

    def _log(self, level: str, message: str, **context: Any) -> None:
        if self.sink is not None:
            getattr(self.sink, level)(message, **context)
        if self.echo_log and not self.quiet:
            print(f"[{level.upper()}] {message}", file=self.out)

    def info(self, message: str, **context: Any) -> None:
        self._log("info", message, **context)

    def success(self, message: str, **context: Any) -> None:
        self._log("success", message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log("warning", message, **context)

    def error(self, message: str, **context: Any) -> None:
        self._log("error", message, **context)

    def debug(self, message: str, **context: Any) -> None:
        if self.sink is not None:
            self.sink.debug(message, **context)

    def say(self, text: str = "") -> None:
        if not self.quiet:
            print(text, file=self.out)

    def step(self, message: str) -> None:
        self.info(f"STEP: {message}")
        self.say(f"{C.CYAN}▶{C.NC} {C.BOLD}{message}{C.NC}")

    def done(self, message: str = "Done") -> None:
        self.success(f"STEP_COMPLETE: {message}")
        self.say(f"{C.GREEN}✓{C.NC} {message}")

    def failed(self, message: str) -> None:
        self.error(f"STEP_FAILED: {message}")
        if not self.quiet:
            print(f"{C.RED}✗{C.NC} {C.RED}{message}{C.NC}", file=self.err)

    def advisory(self, title: str, message: str, remediation: Sequence[str] = ()) -> None:
        self.warning(message)
        if self.quiet:
            return
        banner(title, C.YELLOW, stream=self.out)
        print(message, file=self.out)
        for line in remediation:
            print(command_hint(line), file=self.out)
        print("", file=self.out)

    def fatal(self, message: str, *, title: str = "INSTALLATION FAILED") -> None:
        self.error(message)
        banner(title, C.RED, heavy=True, stream=self.err)
        print(f"{C.RED}{message}{C.NC}", file=self.err)
        print("", file=self.err)
        if self.log_path is not None:
            print(f"Check {C.BLUE}{self.log_path}{C.NC} for details.", file=self.err)
            print("", file=self.err)

    def ask(self, question: str) -> str:
        try:
            return self._input(question).strip()
        except EOFError:
            return ""

    def confirm(self, question: str) -> bool:
        return self.ask(f"{question} [y/N] ").lower() in {"y", "yes"}

    def close(self) -> None:
        if self.sink is not None:
            self.sink.close()

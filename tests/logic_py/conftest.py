from __future__ import annotations

import io
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

import pytest

from clawvps import paths
from clawvps.context import OsRelease, ProvisionContext
from clawvps.logs import LogSink
from clawvps.reporter import Reporter
from clawvps.system import CommandError, SystemRunner

Effect = Callable[[list[str], "str | None"], None]


@dataclass
class Response:
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    effect: Effect | None = None


class FakeRunner(SystemRunner):
    """SystemRunner that records commands instead of running them.

    ``commands`` is the set of binaries visible on PATH. Responses are
    matched by command prefix, most specific first.
    """

    def __init__(self, commands: Sequence[str] = ()) -> None:
        super().__init__(env={"PATH": "/usr/bin:/bin"}, use_sudo=True)
        self.commands: set[str] = set(commands)
        self.calls: list[list[str]] = []
        self.sudo_calls: list[list[str]] = []
        self.inputs: dict[str, str] = {}
        self._responses: list[tuple[tuple[str, ...], Response]] = []

    def respond(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        effect: Effect | None = None,
    ) -> None:
        self._responses.append((prefix, Response(returncode, stdout, stderr, effect)))

    def provides(self, *prefix: str, binary: str) -> None:
        """Running a command starting with prefix makes binary available."""
        self.respond(*prefix, effect=lambda _cmd, _input: self.commands.add(binary))

    def which(self, name: str) -> str | None:
        return f"/usr/bin/{name}" if name in self.commands else None

    def _match(self, cmd: list[str]) -> Response:
        best: tuple[int, Response] | None = None
        for prefix, response in self._responses:
            if tuple(cmd[: len(prefix)]) != prefix:
                continue
            if best is None or len(prefix) >= best[0]:
                best = (len(prefix), response)
        return best[1] if best else Response()

    def run(  # type: ignore[override]
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        sudo: bool = False,
        input_text: str | None = None,
        **_kwargs: object,
    ) -> subprocess.CompletedProcess[str]:
        cmd = list(args)
        self.calls.append(cmd)
        if sudo:
            self.sudo_calls.append(cmd)
        if input_text is not None:
            self.inputs[" ".join(cmd)] = input_text
        response = self._match(cmd)
        if response.effect is not None:
            response.effect(cmd, input_text)
        if check and response.returncode != 0:
            raise CommandError(f"Error: Command failed (exit {response.returncode}): {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, response.returncode, response.stdout, response.stderr)

    def ran(self, *prefix: str) -> bool:
        return any(tuple(call[: len(prefix)]) == prefix for call in self.calls)

    def count(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if tuple(call[: len(prefix)]) == prefix)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def answers() -> list[str]:
    """Queued replies for Reporter.ask; an empty queue behaves like EOF."""
    return []


@pytest.fixture
def reporter(tmp_path: Path, answers: list[str]):
    def _input(_prompt: str) -> str:
        if not answers:
            raise EOFError
        return answers.pop(0)

    sink = LogSink(tmp_path / "logs" / "install.log")
    rep = Reporter(sink, stream=io.StringIO(), err_stream=io.StringIO(), input_fn=_input)
    yield rep
    rep.close()


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home" / "openclaw"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def runtime_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "run" / "user"
    monkeypatch.setattr(paths, "runtime_dir", lambda uid: root / str(uid))
    return root


@pytest.fixture
def make_ctx(fake_runner: FakeRunner, reporter: Reporter, home: Path, runtime_root: Path):
    def _make(**overrides: object) -> ProvisionContext:
        values: dict[str, object] = {
            "runner": fake_runner,
            "reporter": reporter,
            "user": "openclaw",
            "uid": 1000,
            "home": home,
            "account": "openclaw",
            "os_release": OsRelease(id="ubuntu", version_id="24.04", codename="noble", pretty_name="Ubuntu 24.04 LTS"),
        }
        values.update(overrides)
        return ProvisionContext(**values)  # type: ignore[arg-type]

    return _make


def console_text(reporter: Reporter) -> str:
    return reporter.out.getvalue()  # type: ignore[attr-defined]


def log_text(reporter: Reporter) -> str:
    assert reporter.log_path is not None
    return reporter.log_path.read_text(encoding="utf-8")

from __future__ import annotations

import io
import re
from pathlib import Path

from clawvps.logs import LogSink
from clawvps.reporter import Reporter

LINE = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] \[(INFO|SUCCESS|WARNING|ERROR|DEBUG)\] (.*)$")


def _lines(path: Path) -> list[tuple[str, str]]:
    parsed = []
    for raw in path.read_text(encoding="utf-8").splitlines():
        match = LINE.match(raw)
        assert match, raw
        parsed.append((match.group(1), match.group(2)))
    return parsed


def test_log_sink_writes_one_line_per_level(tmp_path: Path) -> None:
    sink = LogSink(tmp_path / "install.log")
    sink.info("Starting OpenClaw installation...")
    sink.success("STEP_COMPLETE: Go go1.22.2 installed")
    sink.warning("Gateway service not active.")
    sink.error("STEP_FAILED: Go installation failed")
    sink.debug("apt output", phase="go")
    sink.close()

    assert _lines(tmp_path / "install.log") == [
        ("INFO", "Starting OpenClaw installation..."),
        ("SUCCESS", "STEP_COMPLETE: Go go1.22.2 installed"),
        ("WARNING", "Gateway service not active."),
        ("ERROR", "STEP_FAILED: Go installation failed"),
        ("DEBUG", "apt output phase=go"),
    ]


def test_log_sink_appends_across_runs(tmp_path: Path) -> None:
    for message in ("first run", "second run"):
        sink = LogSink(tmp_path / "install.log")
        sink.info(message)
        sink.close()
    assert [message for _level, message in _lines(tmp_path / "install.log")] == ["first run", "second run"]


def test_reporter_step_prefixes(tmp_path: Path) -> None:
    out, err = io.StringIO(), io.StringIO()
    reporter = Reporter(LogSink(tmp_path / "install.log"), stream=out, err_stream=err)
    reporter.step("Installing Go")
    reporter.done("Go installed")
    reporter.failed("Go installation failed - command not found")
    reporter.close()

    assert _lines(tmp_path / "install.log") == [
        ("INFO", "STEP: Installing Go"),
        ("SUCCESS", "STEP_COMPLETE: Go installed"),
        ("ERROR", "STEP_FAILED: Go installation failed - command not found"),
    ]
    assert "Installing Go" in out.getvalue() and "Go installed" in out.getvalue()
    assert "✗" in err.getvalue()


def test_reporter_quiet_still_logs(tmp_path: Path) -> None:
    out = io.StringIO()
    reporter = Reporter(LogSink(tmp_path / "update.log"), quiet=True, echo_log=True, stream=out)
    reporter.info("Current OpenClaw version: 1.2.3")
    reporter.close()

    assert out.getvalue() == ""
    assert _lines(tmp_path / "update.log") == [("INFO", "Current OpenClaw version: 1.2.3")]


def test_reporter_fatal_names_log_file(tmp_path: Path) -> None:
    err = io.StringIO()
    reporter = Reporter(LogSink(tmp_path / "install.log"), err_stream=err)
    reporter.fatal("Insufficient disk space. Need 2GB, have 1GB")
    reporter.close()

    text = err.getvalue()
    assert "INSTALLATION FAILED" in text
    assert str(tmp_path / "install.log") in text

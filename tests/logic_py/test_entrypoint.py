from __future__ import annotations

import runpy

from clawvps import main as main_module


def test_module_run_dispatches_to_cli(monkeypatch):
    calls: list[tuple] = []
    monkeypatch.setattr(main_module, "main", lambda *args: calls.append(args))
    runpy.run_module("clawvps.__main__", run_name="__main__")
    assert calls == [()]


def test_module_import_does_not_run_cli(monkeypatch):
    calls: list[tuple] = []
    monkeypatch.setattr(main_module, "main", lambda *args: calls.append(args))
    runpy.run_module("clawvps.__main__", run_name="clawvps.__main__")
    assert calls == []

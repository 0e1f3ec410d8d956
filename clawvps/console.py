"""ANSI colour codes and banner helpers."""

from __future__ import annotations

import sys
from typing import TextIO


class C:
    """ANSI colour codes (no-op if not a tty)."""

    _tty = sys.stdout.isatty()
    RED = "\033[0;31m" if _tty else ""
    GREEN = "\033[0;32m" if _tty else ""
    YELLOW = "\033[1;33m" if _tty else ""
    BLUE = "\033[0;34m" if _tty else ""
    CYAN = "\033[0;36m" if _tty else ""
    BOLD = "\033[1m" if _tty else ""
    NC = "\033[0m" if _tty else ""


RULE = "═" * 79
THIN_RULE = "╶" + "═" * 76


def banner(title: str, colour: str, *, heavy: bool = False, stream: TextIO | None = None) -> None:
    out = stream or sys.stdout
    rule = RULE if heavy else THIN_RULE
    print("", file=out)
    print(f"{colour}{rule}{C.NC}", file=out)
    print(f"{colour}.  {title}{C.NC}", file=out)
    print(f"{colour}{rule}{C.NC}", file=out)
    print("", file=out)


def command_hint(command: str) -> str:
    return f"  {C.CYAN}{command}{C.NC}"

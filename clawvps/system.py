from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Mapping, Sequence

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class CommandError(RuntimeError):
    """Raised when a system command fails in a provisioning-sensitive way."""


class SystemRunner:
    """Runs host commands with the provisioning environment.

    Commands flagged ``sudo=True`` are prefixed with ``sudo`` unless the
    process already runs as root. Captured output is forwarded to
    ``output_sink`` so it lands in the install log.
    """

    def __init__(
        self,
        *,
        env: Mapping[str, str] | None = None,
        use_sudo: bool | None = None,
        output_sink: Callable[[str], None] | None = None,
    ) -> None:
        self.env: dict[str, str] = dict(os.environ if env is None else env)
        self.use_sudo = (os.geteuid() != 0) if use_sudo is None else use_sudo
        self.output_sink = output_sink

    def _command(
        self, args: Sequence[str], *, sudo: bool, env_extra: Mapping[str, str] | None
    ) -> list[str]:
        cmd = list(args)
        if sudo and self.use_sudo:
            prefix = ["sudo"]
            if env_extra:
                prefix += ["env", *[f"{key}={value}" for key, value in env_extra.items()]]
            return prefix + cmd
        return cmd

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        sudo: bool = False,
        capture_output: bool = True,
        input_text: str | None = None,
        env_extra: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cwd: Path | None = None,
        stdin: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        cmd = self._command(args, sudo=sudo, env_extra=env_extra)
        env = dict(self.env)
        if env_extra:
            env.update(env_extra)
        try:
            proc = subprocess.run(
                cmd,
                check=False,
                text=True,
                capture_output=capture_output,
                input=input_text,
                stdin=None if input_text is not None else stdin,
                env=env,
                timeout=timeout,
                cwd=cwd,
            )
        except FileNotFoundError as exc:
            name = cmd[0] if cmd else "command"
            raise CommandError(f"Error: Command not found: {name}") from exc
        except subprocess.TimeoutExpired as exc:
            raise CommandError(
                f"Error: Command timed out after {timeout}s: {' '.join(cmd)}"
            ) from exc
        except OSError as exc:
            raise CommandError(f"Error: Could not run command '{' '.join(cmd)}': {exc}") from exc

        if self.output_sink is not None and capture_output:
            for stream in (proc.stdout, proc.stderr):
                text = (stream or "").strip()
                if text:
                    self.output_sink(text)

        if check and proc.returncode != 0:
            rendered = " ".join(cmd)
            details = (proc.stderr or "").strip() or (proc.stdout or "").strip()
            if details:
                raise CommandError(
                    f"Error: Command failed (exit {proc.returncode}): {rendered}\n{details}"
                )
            raise CommandError(f"Error: Command failed (exit {proc.returncode}): {rendered}")
        return proc

    def succeeds(self, args: Sequence[str], **kwargs: object) -> bool:
        try:
            return self.run(args, check=False, **kwargs).returncode == 0  # type: ignore[arg-type]
        except CommandError:
            return False

    def output(self, args: Sequence[str], **kwargs: object) -> str:
        try:
            proc = self.run(args, check=False, **kwargs)  # type: ignore[arg-type]
        except CommandError:
            return ""
        if proc.returncode != 0:
            return ""
        return (proc.stdout or "").strip()

    def which(self, name: str) -> str | None:
        return shutil.which(name, path=self.env.get("PATH"))

    def has_command(self, name: str) -> bool:
        return self.which(name) is not None

    def prepend_path(self, directory: str | Path) -> None:
        entry = str(directory)
        parts = [p for p in self.env.get("PATH", "").split(os.pathsep) if p]
        if entry in parts:
            return
        self.env["PATH"] = os.pathsep.join([entry, *parts])

    def apt_update(self) -> None:
        self.run(["apt-get", "update"], sudo=True, env_extra=APT_ENV)

    def apt_install(self, packages: Sequence[str]) -> None:
        self.run(["apt-get", "install", "-y", *packages], sudo=True, env_extra=APT_ENV)

    def write_root_file(self, path: str | Path, content: str, *, mode: int | None = None) -> None:
        self.run(["tee", str(path)], sudo=True, input_text=content)
        if mode is not None:
            self.run(["chmod", format(mode, "o"), str(path)], sudo=True)

    def systemctl_user(self, *args: str, check: bool = False) -> subprocess.CompletedProcess[str]:
        return self.run(["systemctl", "--user", *args], check=check)

    def user_unit_active(self, unit: str) -> bool:
        return self.succeeds(["systemctl", "--user", "is-active", "--quiet", unit])

    def user_unit_installed(self, unit: str) -> bool:
        listing = self.output(["systemctl", "--user", "list-unit-files"])
        return f"{unit}.service" in listing

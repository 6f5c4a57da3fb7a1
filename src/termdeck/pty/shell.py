"""Shell resolution — pick an interactive shell for the host platform."""

from __future__ import annotations

import os
import shlex
import sys
from dataclasses import dataclass, field
from typing import Callable, Mapping

DEFAULT_MACOS_SHELL = "/bin/zsh"
DEFAULT_LINUX_SHELL = "/bin/bash"
FALLBACK_SHELL = "/bin/sh"
WINDOWS_SHELL = "powershell.exe"

# Multi-byte output must render correctly no matter what the parent inherited.
UTF8_ENV: dict[str, str] = {
    "LANG": "en_US.UTF-8",
    "LC_ALL": "en_US.UTF-8",
    "PYTHONIOENCODING": "utf-8",
    "PYTHONUTF8": "1",
}

_POWERSHELL_UTF8_SETUP = (
    "[Console]::OutputEncoding = [System.Text.Encoding]::UTF8; "
    "[Console]::InputEncoding = [System.Text.Encoding]::UTF8; "
    "$OutputEncoding = [System.Text.Encoding]::UTF8"
)


@dataclass(frozen=True)
class ShellSpec:
    """A resolved shell: what to exec, with which arguments and environment."""

    executable: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    @property
    def is_powershell(self) -> bool:
        name = os.path.basename(self.executable.replace("\\", "/")).lower()
        return name.startswith(("powershell", "pwsh"))


def resolve_shell(
    platform: str | None = None,
    override: str | None = None,
    environ: Mapping[str, str] | None = None,
    extra_env: Mapping[str, str] | None = None,
    exists: Callable[[str], bool] = os.path.exists,
) -> ShellSpec:
    """Return a usable interactive shell for ``platform``.

    Args:
        platform: ``sys.platform``-style name. Defaults to the running host.
        override: User-chosen shell. A path that exists is used verbatim,
            anything else is split into executable and arguments.
        environ: Inherited environment. Defaults to ``os.environ``.
        extra_env: Entries layered on top of everything else.
        exists: Filesystem probe, used to find a Linux fallback shell.

    Never fails: the most conservative shell is returned when nothing
    better is known.
    """
    platform = platform or sys.platform
    environ = os.environ if environ is None else environ

    executable, args = _pick_shell(platform, override, environ, exists)

    env = {**environ, **UTF8_ENV, **(extra_env or {})}
    return ShellSpec(executable=executable, args=tuple(args), env=env)


def _pick_shell(
    platform: str,
    override: str | None,
    environ: Mapping[str, str],
    exists: Callable[[str], bool],
) -> tuple[str, list[str]]:
    if override and override.strip():
        if exists(override):
            return override, []
        parts = shlex.split(override, posix=not platform.startswith("win"))
        if parts:
            return parts[0], parts[1:]

    if platform.startswith("win"):
        return WINDOWS_SHELL, []

    login_shell = environ.get("SHELL")
    if login_shell:
        return login_shell, []

    if platform == "darwin":
        return DEFAULT_MACOS_SHELL, []
    if exists(DEFAULT_LINUX_SHELL):
        return DEFAULT_LINUX_SHELL, []
    return FALLBACK_SHELL, []


def pipe_mode_args(spec: ShellSpec) -> list[str]:
    """Arguments to use when the shell runs without a terminal.

    PowerShell exits as soon as stdin is a pipe unless told to stay open,
    and defaults to a legacy console encoding.
    """
    if spec.is_powershell:
        return ["-NoExit", "-Command", _POWERSHELL_UTF8_SETUP]
    return list(spec.args)

"""PowerShell adapter implementation."""

from __future__ import annotations

import shutil

from .base import ShellAdapter


class PowerShellAdapter(ShellAdapter):
    """Adapter for command execution via PowerShell."""

    def __init__(self, executable: str | None = None) -> None:
        self.executable = executable or _default_executable()

    @property
    def name(self) -> str:
        return "powershell"

    def build_argv(self, command: str) -> list[str]:
        return [self.executable, "-NoProfile", "-NonInteractive", "-Command", command]


def _default_executable() -> str:
    if shutil.which("pwsh"):
        return "pwsh"
    return "powershell.exe"

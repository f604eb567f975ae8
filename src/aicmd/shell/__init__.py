"""Shell adapter implementations."""

from .base import ExecutionResult, ExecutorStartError, LineHandler, ShellAdapter
from .bash_adapter import BashAdapter
from .powershell_adapter import PowerShellAdapter


def create_shell_adapter(shell_name: str) -> ShellAdapter:
    normalized = shell_name.strip().lower()
    if normalized in {"bash", "sh", "shell"}:
        return BashAdapter(executable="sh" if normalized == "sh" else None)
    if normalized in {"powershell", "pwsh"}:
        return PowerShellAdapter()
    msg = f"Unsupported shell adapter: {shell_name}"
    raise ValueError(msg)


__all__ = [
    "BashAdapter",
    "ExecutionResult",
    "ExecutorStartError",
    "LineHandler",
    "PowerShellAdapter",
    "ShellAdapter",
    "create_shell_adapter",
]

"""Local shell executors."""

from .base import CommandResult, ShellAdapter, decode_output
from .bash_adapter import BashAdapter


def create_shell_adapter(
    shell_name: str,
    *,
    cwd: str | None = None,
    timeout: float | None = None,
) -> ShellAdapter:
    normalized = shell_name.strip().lower()
    if normalized in {"bash", "shell"}:
        return BashAdapter(cwd=cwd, timeout=timeout)
    if normalized == "sh":
        return BashAdapter(executable="sh", cwd=cwd, timeout=timeout)
    msg = f"Unsupported shell adapter: {shell_name}"
    raise ValueError(msg)


__all__ = [
    "BashAdapter",
    "CommandResult",
    "ShellAdapter",
    "create_shell_adapter",
    "decode_output",
]

"""Command execution primitives shared by local and remote runners."""

from __future__ import annotations

import abc
import locale
import logging
import time
from dataclasses import dataclass

from opsagent.safety import sanitize_command

LOGGER = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
NOT_EXECUTABLE_EXIT_CODE = 126
NOT_FOUND_EXIT_CODE = 127


@dataclass(slots=True)
class CommandResult:
    """Outcome of one command, local or remote."""

    command: str
    shell: str
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def failure_reason(self) -> str:
        """One-line reason suitable for a status table."""
        if self.timed_out:
            return "timed out"
        for line in reversed(self.stderr.splitlines()):
            if line.strip():
                return line.strip()
        return f"exit code {self.returncode}"

    @classmethod
    def timeout(
        cls, command: str, shell: str, notice: str, *, stdout: str = "", stderr: str = ""
    ) -> CommandResult:
        return cls(
            command=command,
            shell=shell,
            returncode=TIMEOUT_EXIT_CODE,
            stdout=stdout,
            stderr=f"{stderr}\n{notice}" if stderr else notice,
            timed_out=True,
        )

    @classmethod
    def not_found(cls, command: str, shell: str, message: str) -> CommandResult:
        return cls(
            command=command,
            shell=shell,
            returncode=NOT_FOUND_EXIT_CODE,
            stdout="",
            stderr=message,
        )


def decode_output(payload: bytes | str | None) -> str:
    """Decode captured output, tolerating non-UTF-8 bytes from legacy tools."""
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False), "latin-1"):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")


class ShellAdapter(abc.ABC):
    """Local executor; subclasses only know how to spawn their shell."""

    def __init__(self, *, cwd: str | None = None, timeout: float | None = None) -> None:
        self.cwd = cwd
        self.timeout = timeout

    @property
    @abc.abstractmethod
    def name(self) -> str: ...

    @abc.abstractmethod
    def spawn(self, command: str, *, cwd: str | None, timeout: float | None) -> CommandResult:
        """Run ``command`` once and report what happened; must not raise for exec failures."""

    def execute(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        LOGGER.info(
            "command_request",
            extra={"shell": self.name, "command": sanitize_command(command), "timeout": timeout},
        )
        started = time.monotonic()
        result = self.spawn(command, cwd=cwd, timeout=timeout)
        result.duration_seconds = time.monotonic() - started
        LOGGER.info(
            "command_result",
            extra={
                "shell": result.shell,
                "returncode": result.returncode,
                "timed_out": result.timed_out,
                "duration_seconds": round(result.duration_seconds, 4),
                "stderr_length": len(result.stderr),
            },
        )
        return result

    def run(self, command: str) -> CommandResult:
        return self.execute(command, cwd=self.cwd, timeout=self.timeout)

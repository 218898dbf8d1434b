"""Local POSIX shell executor."""

from __future__ import annotations

import shutil
import subprocess

from .base import NOT_EXECUTABLE_EXIT_CODE, CommandResult, ShellAdapter, decode_output


class BashAdapter(ShellAdapter):
    """Runs commands through ``bash -lc``, or ``sh`` where bash is absent."""

    def __init__(
        self,
        executable: str | None = None,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
        fallback_to_sh: bool = True,
    ) -> None:
        super().__init__(cwd=cwd, timeout=timeout)
        self.executable = executable or _default_executable(fallback_to_sh)

    @property
    def name(self) -> str:
        return self.executable.rsplit("/", 1)[-1]

    def spawn(self, command: str, *, cwd: str | None, timeout: float | None) -> CommandResult:
        try:
            process = subprocess.run(
                [self.executable, "-lc", command],
                capture_output=True,
                cwd=cwd,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            return CommandResult.timeout(
                command,
                self.name,
                f"command timed out after {timeout}s",
                stdout=decode_output(exc.stdout),
                stderr=decode_output(exc.stderr),
            )
        except (FileNotFoundError, NotADirectoryError) as exc:
            return CommandResult.not_found(command, self.name, f"Execution Error: {exc}")
        except OSError as exc:
            return CommandResult(
                command=command,
                shell=self.name,
                returncode=NOT_EXECUTABLE_EXIT_CODE,
                stdout="",
                stderr=f"Execution Error: {exc}",
            )
        return CommandResult(
            command=command,
            shell=self.name,
            returncode=process.returncode,
            stdout=decode_output(process.stdout),
            stderr=decode_output(process.stderr),
        )


def _default_executable(fallback_to_sh: bool) -> str:
    if not shutil.which("bash") and fallback_to_sh and shutil.which("sh"):
        return "sh"
    return "bash"

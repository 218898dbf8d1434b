"""Non-interactive SSH transport for fleet operations."""

from __future__ import annotations

import asyncio
import logging
import time

from opsagent.fleet.models import FleetTarget
from opsagent.shell import CommandResult, decode_output

LOGGER = logging.getLogger(__name__)


class SshRunner:
    """Runs a remote command through the system ``ssh`` client in batch mode."""

    def __init__(
        self,
        *,
        executable: str = "ssh",
        connect_timeout: int = 10,
        command_timeout: float | None = 600.0,
    ) -> None:
        self.executable = executable
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    def build_argv(self, target: FleetTarget, command: str) -> list[str]:
        argv = [
            self.executable,
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
        ]
        if target.port:
            argv.extend(["-p", str(target.port)])
        destination = f"{target.user}@{target.address}" if target.user else target.address
        argv.extend([destination, command])
        return argv

    async def run(self, target: FleetTarget, command: str) -> CommandResult:
        argv = self.build_argv(target, command)
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            return CommandResult.not_found(command, "ssh", f"ssh client not available: {exc}")

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.command_timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            LOGGER.warning(
                "ssh_command_timeout",
                extra={"target": target.name, "timeout": self.command_timeout},
            )
            result = CommandResult.timeout(command, "ssh", "remote command timed out")
            result.duration_seconds = time.monotonic() - started
            return result

        return CommandResult(
            command=command,
            shell="ssh",
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=decode_output(stdout),
            stderr=decode_output(stderr),
            duration_seconds=time.monotonic() - started,
        )

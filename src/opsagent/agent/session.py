"""Interactive request/response cycle and fleet entry point."""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import signal
from collections.abc import Callable
from pathlib import Path

from opsagent.agent.healer import Healer
from opsagent.agent.models import HostContext, RetrySession
from opsagent.agent.retry import RetryEngine
from opsagent.config import AppConfig
from opsagent.fleet import FleetDispatcher, FleetReport, FleetTarget, screen_commands
from opsagent.fleet.dispatcher import RemoteRunner
from opsagent.llm.router import RouterCore
from opsagent.packages import PackageManager, detect_package_manager, fleet_update_commands
from opsagent.persistence import QUOTA_FILE_NAME, FileQuotaStore, SessionLog
from opsagent.safety import ConfirmationPrompt, RiskGate
from opsagent.shell import create_shell_adapter

LOGGER = logging.getLogger(__name__)

PROMPT = "❯ "
EXIT_WORDS = {"exit", "quit"}
WRAP_UP_THRESHOLD = 5


def collect_host_context(
    shell_name: str,
    working_directory: str | None,
    package_manager: PackageManager,
) -> HostContext:
    return HostContext(
        os_name=f"{platform.system()} ({os.name})",
        kernel=platform.release(),
        architecture=platform.machine(),
        shell=shell_name,
        working_directory=working_directory or str(Path.cwd()),
        package_manager=package_manager.value,
    )


class CommandSession:
    """Owns one operator session: feeds each input through a fresh retry cycle."""

    def __init__(
        self,
        *,
        engine: RetryEngine,
        reader: Callable[[str], str] = input,
        reporter: Callable[[str], None] = print,
        preferred_engine: str | None = None,
        wrap_up_threshold: int = WRAP_UP_THRESHOLD,
    ) -> None:
        self.engine = engine
        self.reader = reader
        self.reporter = reporter
        self.preferred_engine = preferred_engine
        self.wrap_up_threshold = wrap_up_threshold
        self.total_errors = 0
        self.requests = 0

    @property
    def gate(self) -> RiskGate:
        return self.engine.gate

    def handle(self, query: str) -> RetrySession:
        self.requests += 1
        session = self.engine.run(query, engine=self.preferred_engine)
        self.total_errors += session.error_tally
        return session

    def repl(self) -> int:
        self.reporter("Ops agent interactive shell (type 'exit' to quit)")
        while True:
            try:
                line = self.reader(PROMPT)
            except (EOFError, KeyboardInterrupt):
                self.reporter("")
                break
            query = line.strip()
            if not query:
                continue
            if query.lower() in EXIT_WORDS:
                break
            self.handle(query)
        self.wrap_up()
        return 0

    def wrap_up(self) -> None:
        LOGGER.info(
            "session_finished",
            extra={"requests": self.requests, "errors": self.total_errors},
        )
        if self.total_errors > self.wrap_up_threshold:
            self.reporter(
                f"{self.total_errors} failed commands this session. "
                "Consider checking the documentation for the tools involved."
            )

    def fleet_update(
        self,
        targets: list[FleetTarget],
        runner: RemoteRunner,
        *,
        concurrency: int = 10,
        commands: dict[str, str] | None = None,
    ) -> FleetReport:
        table = commands if commands is not None else fleet_update_commands()
        approved, declined = screen_commands(table, self.gate)
        dispatcher = FleetDispatcher(runner, concurrency=concurrency)
        self.reporter(f"Dispatching to {len(targets)} targets (max {concurrency} at a time)...")
        report = asyncio.run(_dispatch_with_interrupt(dispatcher, targets, approved, declined))
        self.reporter(report.render())
        return report


async def _dispatch_with_interrupt(
    dispatcher: FleetDispatcher,
    targets: list[FleetTarget],
    commands: dict[str, str],
    declined: set[str],
) -> FleetReport:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        return await dispatcher.dispatch(
            targets, commands, declined=declined, cancel_event=cancel_event
        )
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def build_session(
    config: AppConfig,
    *,
    working_directory: str | None = None,
    preferred_engine: str | None = None,
    ask: ConfirmationPrompt = input,
    reporter: Callable[[str], None] = print,
) -> CommandSession:
    """Wire the router, risk gate, executor and healer from configuration."""
    quota_store = FileQuotaStore(Path(config.state_dir).expanduser() / QUOTA_FILE_NAME)
    session_log = SessionLog(Path(config.log_dir).expanduser())
    router = RouterCore.from_config(config, quota_store, history=session_log)
    package_manager = detect_package_manager()
    executor = create_shell_adapter(
        config.shell, cwd=working_directory, timeout=config.command_timeout
    )
    engine = RetryEngine(
        router=router,
        gate=RiskGate(ask, notify=reporter),
        executor=executor,
        healer=Healer(package_manager),
        session_log=session_log,
        context=collect_host_context(executor.name, working_directory, package_manager),
        reporter=reporter,
        max_retries=config.max_retries,
        redact_prompts=config.redact_prompts,
    )
    LOGGER.debug(
        "session_built",
        extra={"shell": executor.name, "package_manager": package_manager.value},
    )
    return CommandSession(
        engine=engine,
        reader=ask,
        reporter=reporter,
        preferred_engine=preferred_engine,
    )

"""Bounded-concurrency dispatch of one operation across many targets."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Collection, Iterable, Mapping
from typing import Protocol

from opsagent.agent.models import RiskLevel
from opsagent.fleet.models import (
    NOT_DISPATCHED,
    OUTCOME_UNKNOWN,
    FleetReport,
    FleetResult,
    FleetStatus,
    FleetTarget,
)
from opsagent.safety import RiskGate, sanitize_command
from opsagent.shell import CommandResult

LOGGER = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
UNKNOWN_OS_REASON = "Unknown OS: manual update required"
DECLINED_REASON = "declined by operator"


class RemoteRunner(Protocol):
    async def run(self, target: FleetTarget, command: str) -> CommandResult: ...


def screen_commands(
    commands: Mapping[str, str], gate: RiskGate
) -> tuple[dict[str, str], set[str]]:
    """Confirm each distinct risky command once; return approved table and declined families."""
    decisions: dict[str, bool] = {}
    approved: dict[str, str] = {}
    declined: set[str] = set()
    for os_family, command in commands.items():
        if command not in decisions:
            risk = gate.classify(command)
            decisions[command] = risk is RiskLevel.INFO or gate.confirm(risk, command)
        if decisions[command]:
            approved[os_family] = command
        else:
            declined.add(os_family)
    return approved, declined


class FleetDispatcher:
    """Runs one command per target with at most ``concurrency`` in flight.

    When ``cancel_event`` is set the dispatcher stops waiting and returns
    whatever has been reported. Targets still queued at the admission gate are
    cancelled; targets already admitted keep running and are reported as
    unknown.
    """

    def __init__(
        self,
        runner: RemoteRunner,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        on_in_flight: Callable[[int], None] | None = None,
    ) -> None:
        if concurrency < 1:
            msg = "concurrency must be at least 1"
            raise ValueError(msg)
        self.runner = runner
        self.concurrency = concurrency
        self.on_in_flight = on_in_flight
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def dispatch(
        self,
        targets: Iterable[FleetTarget],
        commands: Mapping[str, str],
        *,
        declined: Collection[str] = (),
        cancel_event: asyncio.Event | None = None,
    ) -> FleetReport:
        report = FleetReport()
        runnable: list[tuple[FleetTarget, str]] = []
        for target in targets:
            family = (target.os_family or "").strip().lower()
            if family in declined:
                report.results.append(_skipped(target, DECLINED_REASON))
            elif family in commands:
                runnable.append((target, commands[family]))
            else:
                report.results.append(_skipped(target, UNKNOWN_OS_REASON))

        semaphore = asyncio.Semaphore(self.concurrency)
        admitted: set[str] = set()

        async def run_one(target: FleetTarget, command: str) -> FleetResult:
            async with semaphore:
                admitted.add(target.name)
                self._track(1)
                try:
                    return await self._run_target(target, command)
                finally:
                    self._track(-1)

        tasks = {
            asyncio.create_task(run_one(target, command), name=f"fleet:{target.name}"): target
            for target, command in runnable
        }
        LOGGER.info(
            "fleet_dispatch_started",
            extra={"targets": len(tasks), "concurrency": self.concurrency},
        )

        cancel_waiter = asyncio.create_task(cancel_event.wait()) if cancel_event else None
        pending = set(tasks)
        try:
            while pending:
                waiting = (pending | {cancel_waiter}) if cancel_waiter else pending
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is cancel_waiter:
                        continue
                    pending.discard(task)
                    report.results.append(task.result())
                if cancel_waiter is not None and cancel_waiter in done:
                    report.cancelled = True
                    break
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()

        if report.cancelled:
            for task in pending:
                target = tasks[task]
                if target.name in admitted:
                    reason = OUTCOME_UNKNOWN
                else:
                    task.cancel()
                    reason = NOT_DISPATCHED
                report.results.append(
                    FleetResult(target.name, target.os_family, FleetStatus.CANCELLED, reason)
                )
            LOGGER.warning(
                "fleet_dispatch_cancelled",
                extra={"unreported": len(pending), "reported": len(report.results)},
            )
        return report

    async def _run_target(self, target: FleetTarget, command: str) -> FleetResult:
        LOGGER.info(
            "fleet_target_started",
            extra={"target": target.name, "command": sanitize_command(command)},
        )
        try:
            result = await self.runner.run(target, command)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("fleet_target_error", extra={"target": target.name, "error": str(exc)})
            return FleetResult(target.name, target.os_family, FleetStatus.FAILURE, str(exc))

        if result.success:
            outcome = FleetResult(target.name, target.os_family, FleetStatus.SUCCESS, "ok")
        else:
            outcome = FleetResult(
                target.name, target.os_family, FleetStatus.FAILURE, result.failure_reason
            )
        LOGGER.info(
            "fleet_target_finished",
            extra={"target": target.name, "status": outcome.status.value},
        )
        return outcome

    def _track(self, delta: int) -> None:
        self._in_flight += delta
        if self.on_in_flight is not None:
            self.on_in_flight(self._in_flight)


def _skipped(target: FleetTarget, reason: str) -> FleetResult:
    return FleetResult(target.name, target.os_family, FleetStatus.SKIPPED, reason)

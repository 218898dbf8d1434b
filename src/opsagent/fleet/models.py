"""Fleet targets and per-target dispatch outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class FleetStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


NOT_DISPATCHED = "cancelled before dispatch"
OUTCOME_UNKNOWN = "in flight when cancelled; outcome unknown"


@dataclass(frozen=True, slots=True)
class FleetTarget:
    name: str
    address: str
    os_family: str | None = None
    user: str | None = None
    port: int | None = None
    last_success: str | None = None


@dataclass(frozen=True, slots=True)
class FleetResult:
    target_name: str
    os_family: str | None
    status: FleetStatus
    reason: str = ""

    @property
    def reported(self) -> bool:
        """False when the outcome was never observed because of cancellation."""
        return self.status is not FleetStatus.CANCELLED


@dataclass(slots=True)
class FleetReport:
    results: list[FleetResult] = field(default_factory=list)
    cancelled: bool = False

    def count(self, status: FleetStatus) -> int:
        return sum(1 for result in self.results if result.status is status)

    @property
    def succeeded(self) -> int:
        return self.count(FleetStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return self.count(FleetStatus.FAILURE)

    @property
    def skipped(self) -> int:
        return self.count(FleetStatus.SKIPPED)

    def render(self) -> str:
        rows = [("TARGET", "OS", "STATUS", "DETAIL")]
        for result in sorted(self.results, key=lambda item: (not item.reported, item.target_name)):
            rows.append(
                (
                    result.target_name,
                    result.os_family or "unknown",
                    result.status.value.upper(),
                    result.reason,
                )
            )
        widths = [max(len(row[index]) for row in rows) for index in range(3)]
        lines = [
            "  ".join(
                [*(cell.ljust(widths[index]) for index, cell in enumerate(row[:3])), row[3]]
            ).rstrip()
            for row in rows
        ]
        if self.cancelled:
            lines.append("")
            lines.append("Dispatch interrupted: CANCELLED rows were not reported.")
        summary = (
            f"Succeeded: {self.succeeded}  Failed: {self.failed}  Skipped: {self.skipped}"
        )
        cancelled = self.count(FleetStatus.CANCELLED)
        if cancelled:
            summary = f"{summary}  Unknown (cancelled): {cancelled}"
        lines.append("")
        lines.append(summary)
        return "\n".join(lines)

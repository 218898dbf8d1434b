"""Data models shared by the router, risk gate, retry loop and fleet dispatcher."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum


class RiskLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class FailureCategory(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    COMMAND_NOT_FOUND = "command_not_found"
    PATH_NOT_FOUND = "path_not_found"
    RESOURCE_LOCKED = "resource_locked"
    UNKNOWN = "unknown"


class RetryState(str, Enum):
    """Named states of a single user request and its automatic follow-ups."""

    AWAITING_INPUT = "awaiting_input"
    AWAITING_DIRECTIVE = "awaiting_directive"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXECUTING = "executing"
    DIAGNOSING = "diagnosing"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    MAX_RETRIES_REACHED = "max_retries_reached"
    CANCELLED = "cancelled"
    CLARIFICATION_NEEDED = "clarification_needed"
    NO_COMMAND = "no_command"
    PROVIDER_FAILED = "provider_failed"
    INVALID_DIRECTIVE = "invalid_directive"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        RetryState.SUCCEEDED,
        RetryState.MAX_RETRIES_REACHED,
        RetryState.CANCELLED,
        RetryState.CLARIFICATION_NEEDED,
        RetryState.NO_COMMAND,
        RetryState.PROVIDER_FAILED,
        RetryState.INVALID_DIRECTIVE,
    }
)


@dataclass(frozen=True, slots=True)
class Directive:
    """A backend-proposed command for the current request."""

    command: str
    explanation: str
    risk_level: RiskLevel = RiskLevel.INFO
    needs_clarification: bool = False
    thought: str | None = None


@dataclass(frozen=True, slots=True)
class Attempt:
    """Outcome of one executed (or declined) directive."""

    command: str
    stdout: str
    stderr: str
    exit_code: int
    success: bool
    diagnosis: str | None = None
    category: FailureCategory | None = None
    cancelled: bool = False


@dataclass(slots=True)
class RetrySession:
    """Bookkeeping for one user-originated request."""

    original_query: str
    pending_error: str | None = None
    retry_count: int = 0
    error_tally: int = 0
    state: RetryState = RetryState.AWAITING_INPUT
    attempts: list[Attempt] = field(default_factory=list)
    directive: Directive | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class HostContext:
    """Runtime facts handed to generation backends for prompt building."""

    os_name: str
    kernel: str
    architecture: str
    shell: str
    working_directory: str
    package_manager: str


CURRENT_REQUEST_PREFIX = "Current Request: "


class Transcript:
    """Bounded conversation history rendered into outgoing prompts."""

    def __init__(self, max_entries: int = 10) -> None:
        self._entries: deque[tuple[str, str]] = deque(maxlen=max_entries)

    def add(self, role: str, text: str) -> None:
        if text.strip():
            self._entries.append((role, text.strip()))

    def __len__(self) -> int:
        return len(self._entries)

    def render(self, request: str) -> str:
        if not self._entries:
            return request
        lines = ["Recent Conversation History:"]
        lines.extend(f"{role.upper()}: {text}" for role, text in self._entries)
        lines.append("")
        lines.append(f"{CURRENT_REQUEST_PREFIX}{request}")
        return "\n".join(lines)

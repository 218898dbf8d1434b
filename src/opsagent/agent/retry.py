"""Self-healing request loop: directive, risk gate, execute, diagnose, retry."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from opsagent.agent.healer import Healer, classify_failure
from opsagent.agent.models import (
    Attempt,
    Directive,
    HostContext,
    RetrySession,
    RetryState,
    RiskLevel,
    Transcript,
)
from opsagent.llm.errors import ProviderError
from opsagent.llm.prompts import RETRY_PROMPT_TEMPLATE, DirectiveParseError, parse_directive
from opsagent.safety import RiskGate, sanitize_command, sanitize_prompt
from opsagent.shell import CommandResult

LOGGER = logging.getLogger(__name__)

MAX_RETRIES = 3
CANCELLED_EXIT_CODE = 130
_STDERR_EXCERPT_CHARS = 1000
_STDOUT_CONTEXT_CHARS = 500

Reporter = Callable[[str], None]


class Router(Protocol):
    def generate_with_fallback(
        self,
        context: HostContext | None,
        query: str,
        explicit_preference: str | None = None,
        *,
        routing_query: str | None = None,
    ) -> str: ...


class Executor(Protocol):
    def run(self, command: str) -> CommandResult: ...


class AttemptLog(Protocol):
    def record(self, attempt: Attempt, **fields: object) -> None: ...


def failure_summary(attempt: Attempt) -> str:
    """Structured failure text fed back to the backend on retry."""
    stderr = attempt.stderr.strip()[-_STDERR_EXCERPT_CHARS:]
    summary = f"Ran: {attempt.command}\nFailed (Exit: {attempt.exit_code})\nError: {stderr}"
    if attempt.diagnosis:
        summary = f"{summary}\n(Hint: System suggests trying: '{attempt.diagnosis}')"
    return summary


class RetryEngine:
    """Drives one user request through the bounded self-healing state machine.

    The ``on_*`` methods are the transitions; they only mutate the
    ``RetrySession`` they are given and return its new state. ``run`` wires
    them to the router, risk gate, executor and session log.
    """

    def __init__(
        self,
        *,
        router: Router,
        gate: RiskGate,
        executor: Executor,
        healer: Healer | None = None,
        session_log: AttemptLog | None = None,
        transcript: Transcript | None = None,
        context: HostContext | None = None,
        reporter: Reporter = print,
        max_retries: int = MAX_RETRIES,
        redact_prompts: bool = True,
    ) -> None:
        self.router = router
        self.gate = gate
        self.executor = executor
        self.healer = healer or Healer()
        self.session_log = session_log
        self.transcript = transcript if transcript is not None else Transcript()
        self.context = context
        self.reporter = reporter
        self.max_retries = max_retries
        self.redact_prompts = redact_prompts

    # Transitions

    def start(self, query: str) -> RetrySession:
        """Fresh bookkeeping for new user input, whatever was in flight before."""
        return RetrySession(original_query=query, state=RetryState.AWAITING_DIRECTIVE)

    def next_prompt(self, session: RetrySession) -> str:
        if session.state is RetryState.RETRYING:
            session.state = RetryState.AWAITING_DIRECTIVE
        if session.pending_error:
            return RETRY_PROMPT_TEMPLATE.format(error=session.pending_error)
        return session.original_query

    def on_directive(self, session: RetrySession, directive: Directive) -> RetryState:
        session.directive = directive
        if directive.needs_clarification:
            session.state = RetryState.CLARIFICATION_NEEDED
            session.message = directive.explanation or "Please clarify your request."
        elif not directive.command:
            session.state = RetryState.NO_COMMAND
            session.message = directive.explanation or "No command was proposed."
        else:
            session.state = RetryState.AWAITING_CONFIRMATION
        return session.state

    def on_confirmation(self, session: RetrySession, approved: bool) -> RetryState:
        if approved:
            session.state = RetryState.EXECUTING
            return session.state
        session.state = RetryState.CANCELLED
        session.pending_error = None
        session.retry_count = 0
        session.message = "Cancelled."
        return session.state

    def on_execution(self, session: RetrySession, attempt: Attempt) -> RetryState:
        session.attempts.append(attempt)
        if attempt.success:
            session.state = RetryState.SUCCEEDED
            session.pending_error = None
            session.retry_count = 0
            session.message = None
            return session.state

        session.state = RetryState.DIAGNOSING
        session.error_tally += 1
        if session.retry_count < self.max_retries:
            session.retry_count += 1
            session.pending_error = failure_summary(attempt)
            session.state = RetryState.RETRYING
            session.message = f"Auto-retrying ({session.retry_count}/{self.max_retries})..."
        else:
            session.state = RetryState.MAX_RETRIES_REACHED
            session.message = (
                f"Maximum retries reached ({self.max_retries}). "
                "Automatic recovery is exhausted; please check the error manually."
            )
        return session.state

    def on_provider_error(self, session: RetrySession, error: ProviderError) -> RetryState:
        session.state = RetryState.PROVIDER_FAILED
        session.message = error.user_message()
        return session.state

    def on_invalid_directive(
        self, session: RetrySession, raw: str, error: DirectiveParseError
    ) -> RetryState:
        session.state = RetryState.INVALID_DIRECTIVE
        session.message = f"{error}\nRaw suggestion: {raw.strip()}"
        return session.state

    def inspect(self, result: CommandResult) -> Attempt:
        """Turn an execution result into an attempt, diagnosing failures."""
        if result.success:
            return Attempt(
                command=result.command,
                stdout=result.stdout,
                stderr=result.stderr,
                exit_code=result.returncode,
                success=True,
            )
        category = classify_failure(result.stdout, result.stderr, result.returncode)
        diagnosis = self.healer.diagnose(
            category, command=result.command, stdout=result.stdout, stderr=result.stderr
        )
        LOGGER.info(
            "command_failure_diagnosed",
            extra={
                "command": sanitize_command(result.command),
                "category": category.value,
                "diagnosis": diagnosis,
            },
        )
        return Attempt(
            command=result.command,
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.returncode,
            success=False,
            diagnosis=diagnosis,
            category=category,
        )

    # Driver

    def run(self, query: str, *, engine: str | None = None) -> RetrySession:
        session = self.start(query)
        first_turn = True
        while not session.state.terminal:
            outgoing = self.transcript.render(self.next_prompt(session))
            if first_turn:
                self.transcript.add("user", query)
                first_turn = False
            if self.redact_prompts:
                outgoing = sanitize_prompt(outgoing)

            try:
                raw = self.router.generate_with_fallback(
                    self.context, outgoing, engine, routing_query=query
                )
            except ProviderError as exc:
                LOGGER.error(
                    "directive_generation_failed",
                    extra={"error_type": type(exc).__name__, "error": exc.message},
                )
                self.on_provider_error(session, exc)
                break

            try:
                directive = parse_directive(raw)
            except DirectiveParseError as exc:
                self.on_invalid_directive(session, raw, exc)
                break

            self.transcript.add("ai", directive.explanation)
            if self.on_directive(session, directive) is not RetryState.AWAITING_CONFIRMATION:
                break

            self._show_directive(directive)
            risk, approved = self.gate.check(directive.command)
            if self.on_confirmation(session, approved) is RetryState.CANCELLED:
                self._record(
                    session,
                    Attempt(
                        command=directive.command,
                        stdout="",
                        stderr="",
                        exit_code=CANCELLED_EXIT_CODE,
                        success=False,
                        cancelled=True,
                    ),
                    risk,
                )
                break

            attempt = self.inspect(self.executor.run(directive.command))
            self._show_attempt(attempt)
            self.on_execution(session, attempt)
            self._record(session, attempt, risk)
            if attempt.success:
                output = attempt.stdout.strip()[:_STDOUT_CONTEXT_CHARS]
                self.transcript.add("system", f"Ran: {attempt.command}\nOutput: {output}")
            else:
                self.transcript.add("system", failure_summary(attempt))
            if session.state is RetryState.RETRYING and session.message:
                self.reporter(session.message)

        if session.state is not RetryState.SUCCEEDED and session.message:
            self.reporter(session.message)
        LOGGER.info(
            "request_finished",
            extra={
                "state": session.state.value,
                "attempts": len(session.attempts),
                "error_tally": session.error_tally,
            },
        )
        return session

    def _show_directive(self, directive: Directive) -> None:
        if directive.explanation:
            self.reporter(f"Explanation: {directive.explanation}")
        label = f"Command: {directive.command}"
        if directive.risk_level is not RiskLevel.INFO:
            label = f"{label}  [{directive.risk_level.value}]"
        self.reporter(label)

    def _show_attempt(self, attempt: Attempt) -> None:
        if attempt.stdout.strip():
            self.reporter(attempt.stdout.rstrip())
        if attempt.success:
            return
        if attempt.stderr.strip():
            self.reporter(attempt.stderr.rstrip())
        self.reporter(f"Command failed (Exit: {attempt.exit_code})")
        if attempt.diagnosis:
            self.reporter(f"Hint: System suggests trying: '{attempt.diagnosis}'")

    def _record(self, session: RetrySession, attempt: Attempt, risk: RiskLevel) -> None:
        if self.session_log is None:
            return
        self.session_log.record(
            attempt,
            query=session.original_query,
            retry_count=session.retry_count,
            risk_level=risk.value,
        )

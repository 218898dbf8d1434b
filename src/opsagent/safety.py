"""Risk classification, tiered confirmation and prompt/command redaction."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from opsagent.agent.models import RiskLevel

LOGGER = logging.getLogger(__name__)

ConfirmationPrompt = Callable[[str], str]


@dataclass(frozen=True, slots=True)
class RiskRule:
    level: RiskLevel
    contains: tuple[str, ...] = ()
    prefixes: tuple[str, ...] = ()

    def matches(self, command: str) -> bool:
        return any(token in command for token in self.contains) or command.startswith(
            self.prefixes
        )


# Evaluated in order; the first matching rule wins.
RISK_RULES: tuple[RiskRule, ...] = (
    RiskRule(RiskLevel.CRITICAL, contains=("rm -rf", "mkfs", "dd if=", "> /dev/sd")),
    RiskRule(
        RiskLevel.WARNING,
        contains=("chmod 777", "kill -9", "shutdown", "reboot", "systemctl stop"),
    ),
    RiskRule(
        RiskLevel.WARNING,
        prefixes=("apt remove", "dnf remove", "pacman -R", "apk del"),
    ),
)

_WARNING_ANSWERS = {"y", "yes"}
_CRITICAL_ANSWER = "YES"

_PROMPT_REDACTIONS = (
    (re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"), "[REDACTED_IP]"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[REDACTED_EMAIL]"),
    (re.compile(r"(sk-[a-zA-Z0-9]{20,})|(Bearer [a-zA-Z0-9\-._~+/]+=*)"), "[REDACTED_SECRET]"),
)

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


def sanitize_prompt(text: str) -> str:
    """Redact addresses and credentials before text leaves the host."""
    sanitized = text
    for pattern, replacement in _PROMPT_REDACTIONS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def sanitize_command(command: str) -> str:
    sanitized = command
    for pattern in _SECRET_PATTERNS:
        sanitized = pattern.sub(r"\1***", sanitized)
    return sanitized


class RiskGate:
    """Classifies commands into risk tiers and enforces tier-specific confirmation."""

    def __init__(
        self,
        ask: ConfirmationPrompt,
        *,
        rules: tuple[RiskRule, ...] = RISK_RULES,
        notify: Callable[[str], None] = print,
    ) -> None:
        self.ask = ask
        self.rules = rules
        self.notify = notify

    def classify(self, command: str) -> RiskLevel:
        normalized = command.strip()
        for rule in self.rules:
            if rule.matches(normalized):
                return rule.level
        return RiskLevel.INFO

    def confirm(self, risk: RiskLevel, command: str) -> bool:
        """Return true when execution may proceed; a decline is not an error."""
        if risk is RiskLevel.INFO:
            return True

        if risk is RiskLevel.WARNING:
            self.notify("WARNING: This command may modify your system.")
            self.notify(f"   Command: {command}")
            answer = self._read_answer("Do you want to proceed? [y/N]: ")
            approved = answer.strip().lower() in _WARNING_ANSWERS
        else:
            self.notify("CRITICAL RISK: This command can cause DATA LOSS.")
            self.notify(f"   Command: {command}")
            self.notify("To execute this command, you must type 'YES' (case-sensitive).")
            answer = self._read_answer("> ")
            approved = answer.strip() == _CRITICAL_ANSWER

        LOGGER.info(
            "risk_gate_decision",
            extra={
                "risk_level": risk.value,
                "command": sanitize_command(command),
                "approved": approved,
            },
        )
        return approved

    def check(self, command: str) -> tuple[RiskLevel, bool]:
        risk = self.classify(command)
        return risk, self.confirm(risk, command)

    def _read_answer(self, message: str) -> str:
        try:
            return self.ask(message)
        except EOFError:
            return ""

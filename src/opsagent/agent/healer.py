"""Failure classification and remediation hints for executed commands.

Classification is a plain substring/exit-code rule table, so it depends on
the wording the shell and the failing tool print (English locales).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from opsagent.agent.models import FailureCategory
from opsagent.packages import PackageManager, install_command, lock_cleanup_command


@dataclass(frozen=True, slots=True)
class FailureRule:
    category: FailureCategory
    patterns: tuple[str, ...] = ()
    exit_codes: tuple[int, ...] = ()

    def matches(self, text: str, exit_code: int) -> bool:
        return exit_code in self.exit_codes or any(pattern in text for pattern in self.patterns)


# Ordered; the first matching rule wins.
FAILURE_RULES: tuple[FailureRule, ...] = (
    FailureRule(FailureCategory.PERMISSION_DENIED, ("permission denied",), (126,)),
    FailureRule(FailureCategory.COMMAND_NOT_FOUND, ("not found",), (127,)),
    FailureRule(FailureCategory.PATH_NOT_FOUND, ("no such file", "directory")),
    FailureRule(FailureCategory.RESOURCE_LOCKED, ("lock", "temporarily unavailable")),
)

_COMPILER_HINTS = (
    ("e0432", "Check your imports. Tried `cargo add`? Or check `mod.rs` exposure."),
    ("e0425", "Variable not found. Check scope or `self.` prefix."),
    ("e0282", "Type annotation needed. Try `: Type = ...`"),
)

_ELEVATED_PREFIX = re.compile(r"^\s*(?:sudo|doas|su)\b", re.IGNORECASE)
_BINARY_NAME = r"([A-Za-z0-9_.+-]+)"
_MISSING_BINARY_PATTERNS = (
    re.compile(rf"command not found:\s*{_BINARY_NAME}"),
    re.compile(rf"{_BINARY_NAME}:\s*(?:command )?not found"),
)
_NOISE_WORDS = {"sh", "bash", "zsh", "line"}


def classify_failure(stdout: str, stderr: str, exit_code: int) -> FailureCategory:
    combined = f"{stderr} {stdout}".lower()
    for rule in FAILURE_RULES:
        if rule.matches(combined, exit_code):
            return rule.category
    return FailureCategory.UNKNOWN


class Healer:
    """Derives one concrete remediation suggestion per failure category."""

    def __init__(self, package_manager: PackageManager = PackageManager.UNKNOWN) -> None:
        self.package_manager = package_manager

    def diagnose(
        self,
        category: FailureCategory,
        *,
        command: str,
        stdout: str = "",
        stderr: str = "",
    ) -> str | None:
        combined = f"{stderr} {stdout}".lower()
        for code, hint in _COMPILER_HINTS:
            if code in combined:
                return hint

        if category is FailureCategory.PERMISSION_DENIED:
            if _ELEVATED_PREFIX.match(command):
                return None
            return f"sudo {command.strip()}"
        if category is FailureCategory.COMMAND_NOT_FOUND:
            binary = missing_binary(stderr, command)
            if binary is None:
                return None
            return install_command(binary, self.package_manager)
        if category is FailureCategory.PATH_NOT_FOUND:
            return "ls -F"
        if category is FailureCategory.RESOURCE_LOCKED:
            return lock_cleanup_command(self.package_manager)
        return None


def missing_binary(stderr: str, command: str) -> str | None:
    """Best-effort name of the binary a shell reported as missing."""
    for pattern in _MISSING_BINARY_PATTERNS:
        for match in pattern.finditer(stderr):
            name = match.group(1)
            if name.lower() not in _NOISE_WORDS and not name.isdigit():
                return name

    words = [word for word in command.split() if not _ELEVATED_PREFIX.match(word)]
    return words[0] if words else None

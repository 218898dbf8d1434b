"""Backends that answer without any network access."""

from __future__ import annotations

import logging

from opsagent.agent.models import HostContext
from opsagent.llm.client import GenerationBackend
from opsagent.llm.errors import UnknownProviderError
from opsagent.llm.prompts import current_request, directive_json

LOGGER = logging.getLogger(__name__)

# Ordered keyword rules; the first rule with any keyword in the request wins.
OFFLINE_RULES: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("disk", "space"), "df -h", "Checks disk space usage."),
    (("ip", "network"), "ip a", "Shows network interfaces and addresses."),
    (("list", "files"), "ls -lah", "Lists files in the current directory."),
    (("memory", "ram"), "free -h", "Shows memory usage."),
    (("process", "top"), "ps aux | head -n 10", "Shows top running processes."),
)


class OfflineBackend(GenerationBackend):
    """Keyword rule engine used when no provider is configured."""

    @property
    def name(self) -> str:
        return "Offline"

    def generate(self, context: HostContext | None, prompt: str) -> str:
        lowered = current_request(prompt).lower()
        words = set(lowered.replace(",", " ").replace("?", " ").split())
        for keywords, command, explanation in OFFLINE_RULES:
            if any(_keyword_present(keyword, lowered, words) for keyword in keywords):
                LOGGER.debug("offline_rule_matched", extra={"command": command})
                return directive_json(command, f"{explanation} (Offline Mode)")
        raise UnknownProviderError("No offline rule found for this query.", engine=self.name)


class MockBackend(GenerationBackend):
    """Deterministic canned responses for demos and tests."""

    @property
    def name(self) -> str:
        return "Mock"

    def generate(self, context: HostContext | None, prompt: str) -> str:
        lowered = prompt.lower()
        if "error" in lowered:
            raise UnknownProviderError("Simulated mock failure", engine=self.name)
        if "hello" in lowered:
            return directive_json("echo 'Hello from mock'", "Greets the operator.")
        if "status" in lowered:
            return directive_json("uptime", "Shows how long the system has been running.")
        return directive_json("ls -la", "Lists the current directory.")


def _keyword_present(keyword: str, lowered: str, words: set[str]) -> bool:
    # Short keywords must be whole words so "ip" does not match "zip".
    if len(keyword) <= 3:
        return keyword in words
    return keyword in lowered

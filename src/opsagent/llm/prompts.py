"""System prompt construction and directive parsing."""

from __future__ import annotations

import json
import logging

from opsagent.agent.models import CURRENT_REQUEST_PREFIX, Directive, HostContext, RiskLevel

LOGGER = logging.getLogger(__name__)

BASE_SYSTEM_PROMPT_PARTS = [
    "You are an operations agent acting as a senior Linux site reliability engineer.",
    "Keep it simple: generate the simplest, most robust command that achieves the request.",
    "Prioritize safety, precision and reversibility.",
    (
        "Avoid destructive commands unless they are explicitly requested"
        " and clearly justified by the request."
    ),
    "Reason through the problem in the thought field before choosing the command.",
    "Keep explanation short and clinical; no conversational filler.",
    (
        "If the request is ambiguous or missing a critical fact, set"
        " needs_clarification to true, leave command empty, and ask in explanation."
    ),
    (
        "Always return strict JSON only, without markdown fences, with keys:"
        " thought (string), command (string), explanation (string),"
        " risk_level (INFO|WARNING|CRITICAL), needs_clarification (boolean)."
    ),
]

RETRY_PROMPT_TEMPLATE = (
    "The previous command failed with this error: {error}. "
    "Please fix it and provide the corrected command."
)

HISTORY_SUMMARY_HEADER = "Context from the previous session (recent commands):"


def current_request(prompt: str) -> str:
    """Strip conversation history and session summaries, leaving the request itself."""
    _, marker, tail = prompt.rpartition(CURRENT_REQUEST_PREFIX)
    if marker:
        return tail
    if prompt.startswith(HISTORY_SUMMARY_HEADER):
        return prompt.split("\n\n", 1)[-1]
    return prompt


class DirectiveParseError(ValueError):
    """Backend output could not be read as a directive."""


def build_system_prompt(context: HostContext | None) -> str:
    prompt = " ".join(BASE_SYSTEM_PROMPT_PARTS)
    if context is None:
        return prompt
    return "\n".join(
        [
            prompt,
            "",
            "## SYSTEM CONTEXT",
            f"- OS: {context.os_name}",
            f"- Kernel: {context.kernel}",
            f"- Architecture: {context.architecture}",
            f"- Shell: {context.shell}",
            f"- Working directory: {context.working_directory}",
            f"- Package manager: {context.package_manager}",
        ]
    )


def build_request_text(context: HostContext | None, prompt: str) -> str:
    """Single-message form used by backends without a separate system role."""
    return f'{build_system_prompt(context)}\n\nUser Request: "{prompt}"'


def strip_markdown_fences(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


def parse_directive(text: str) -> Directive:
    cleaned = strip_markdown_fences(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise DirectiveParseError(f"JSON Parsing Failed: {exc}") from exc
    if not isinstance(parsed, dict):
        raise DirectiveParseError("JSON Parsing Failed: expected a top-level object")
    return to_directive(parsed)


def to_directive(parsed: dict[str, object]) -> Directive:
    command = parsed.get("command")
    explanation = parsed.get("explanation")
    risk_level = parsed.get("risk_level")
    needs_clarification = parsed.get("needs_clarification", False)
    thought = parsed.get("thought")

    if command is None:
        command = ""
    if not isinstance(command, str):
        raise DirectiveParseError("Directive command must be a string")
    if not isinstance(explanation, str):
        explanation = ""
    try:
        normalized_risk = RiskLevel(str(risk_level).strip().upper())
    except ValueError:
        normalized_risk = RiskLevel.INFO
    if not isinstance(needs_clarification, bool):
        needs_clarification = False
    if thought is not None and not isinstance(thought, str):
        thought = None

    if thought:
        LOGGER.debug("directive_thought", extra={"thought": thought})

    return Directive(
        command=command.strip(),
        explanation=explanation.strip(),
        risk_level=normalized_risk,
        needs_clarification=needs_clarification,
        thought=thought,
    )


def directive_json(
    command: str,
    explanation: str,
    *,
    risk_level: RiskLevel = RiskLevel.INFO,
    thought: str | None = None,
) -> str:
    """Serialize a directive in the backend wire shape."""
    payload: dict[str, object] = {
        "command": command,
        "explanation": explanation,
        "risk_level": risk_level.value,
        "needs_clarification": False,
    }
    if thought:
        payload["thought"] = thought
    return json.dumps(payload)

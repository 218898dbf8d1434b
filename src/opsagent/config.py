"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_STATE_DIR = str(Path.home() / ".opsagent")
DEFAULT_INVENTORY_FILE = "inventory.json"


def _to_bool(value: object, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if isinstance(value, bool):
        return value
    if not isinstance(value, str):
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables and JSON config files."""

    default_engine: str
    fallback_engine: str
    analysis_engine: str | None
    long_query_engine: str | None
    gemini_api_key: str | None
    gemini_model: str
    vertex_oauth_token: str | None
    vertex_project_id: str | None
    vertex_region: str
    vertex_model: str
    openai_api_key: str | None
    openai_model: str
    openai_api_url: str
    openai_reasoning_effort: str | None
    claude_api_key: str | None
    claude_model: str
    web_psid: str | None
    web_papisid: str | None
    web_user_agent: str | None
    state_dir: str
    log_dir: str
    log_level: str
    max_retries: int
    history_summary_size: int
    request_timeout: float
    command_timeout: float | None
    redact_prompts: bool
    shell: str
    working_directory: str | None
    fleet_inventory: str
    fleet_concurrency: int
    fleet_connect_timeout: int
    fleet_command_timeout: float

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()
        gemini = _section(file_config, "gemini")
        vertex = _section(file_config, "vertex_ai")
        openai = _section(file_config, "openai")
        claude = _section(file_config, "claude")
        web = _section(file_config, "web_session")
        fleet = _section(file_config, "fleet")

        return cls(
            default_engine=(
                os.getenv("OPSAGENT_ENGINE")
                or _to_optional_string(file_config.get("default_engine"))
                or "gemini"
            ),
            fallback_engine=(
                os.getenv("OPSAGENT_FALLBACK_ENGINE")
                or _to_optional_string(file_config.get("fallback_engine"))
                or "web_session"
            ),
            analysis_engine=(
                os.getenv("OPSAGENT_ANALYSIS_ENGINE")
                or _to_optional_string(file_config.get("analysis_engine"))
            ),
            long_query_engine=(
                os.getenv("OPSAGENT_LONG_QUERY_ENGINE")
                or _to_optional_string(file_config.get("long_query_engine"))
            ),
            gemini_api_key=(
                os.getenv("OPSAGENT_GEMINI_API_KEY")
                or os.getenv("GEMINI_API_KEY")
                or _to_optional_string(gemini.get("api_key"))
            ),
            gemini_model=(
                os.getenv("OPSAGENT_GEMINI_MODEL")
                or _to_optional_string(gemini.get("model"))
                or "gemini-2.5-flash"
            ),
            vertex_oauth_token=(
                os.getenv("OPSAGENT_VERTEX_TOKEN")
                or _to_optional_string(vertex.get("oauth_token"))
            ),
            vertex_project_id=(
                os.getenv("OPSAGENT_VERTEX_PROJECT")
                or os.getenv("GOOGLE_CLOUD_PROJECT")
                or _to_optional_string(vertex.get("project_id"))
            ),
            vertex_region=(
                os.getenv("OPSAGENT_VERTEX_REGION")
                or _to_optional_string(vertex.get("region"))
                or "us-central1"
            ),
            vertex_model=(
                os.getenv("OPSAGENT_VERTEX_MODEL")
                or _to_optional_string(vertex.get("model"))
                or "gemini-2.5-flash"
            ),
            openai_api_key=(
                os.getenv("OPSAGENT_OPENAI_API_KEY")
                or os.getenv("OPENAI_API_KEY")
                or _to_optional_string(openai.get("api_key"))
            ),
            openai_model=(
                os.getenv("OPSAGENT_OPENAI_MODEL")
                or _to_optional_string(openai.get("model"))
                or "gpt-5.2"
            ),
            openai_api_url=(
                os.getenv("OPSAGENT_OPENAI_API_URL")
                or _to_optional_string(openai.get("api_url"))
                or "https://api.openai.com/v1/responses"
            ),
            openai_reasoning_effort=(
                os.getenv("OPSAGENT_OPENAI_REASONING_EFFORT")
                or _to_optional_string(openai.get("reasoning_effort"))
            ),
            claude_api_key=(
                os.getenv("OPSAGENT_CLAUDE_API_KEY")
                or os.getenv("ANTHROPIC_API_KEY")
                or _to_optional_string(claude.get("api_key"))
            ),
            claude_model=(
                os.getenv("OPSAGENT_CLAUDE_MODEL")
                or _to_optional_string(claude.get("model"))
                or "claude-sonnet-4-5"
            ),
            web_psid=(
                os.getenv("OPSAGENT_WEB_PSID")
                or _to_optional_string(web.get("psid"))
            ),
            web_papisid=(
                os.getenv("OPSAGENT_WEB_PAPISID")
                or _to_optional_string(web.get("papisid"))
            ),
            web_user_agent=(
                os.getenv("OPSAGENT_WEB_USER_AGENT")
                or _to_optional_string(web.get("user_agent"))
            ),
            state_dir=(
                os.getenv("OPSAGENT_STATE_DIR")
                or _to_optional_string(file_config.get("state_dir"))
                or DEFAULT_STATE_DIR
            ),
            log_dir=(
                os.getenv("OPSAGENT_LOG_DIR")
                or _to_optional_string(file_config.get("log_dir"))
                or "logs"
            ),
            log_level=_to_log_level(
                os.getenv("OPSAGENT_LOG_LEVEL") or file_config.get("log_level")
            ),
            max_retries=_to_positive_int(
                os.getenv("OPSAGENT_MAX_RETRIES") or file_config.get("max_retries"),
                default=3,
            ),
            history_summary_size=_to_positive_int(
                os.getenv("OPSAGENT_HISTORY_SUMMARY_SIZE")
                or file_config.get("history_summary_size"),
                default=3,
            ),
            request_timeout=_to_positive_float(
                os.getenv("OPSAGENT_REQUEST_TIMEOUT") or file_config.get("request_timeout"),
                default=60.0,
            ),
            command_timeout=_to_optional_positive_float(
                os.getenv("OPSAGENT_COMMAND_TIMEOUT") or file_config.get("command_timeout")
            ),
            redact_prompts=_to_bool(
                os.getenv("OPSAGENT_REDACT_PROMPTS"),
                default=_to_bool(file_config.get("redact_prompts"), default=True),
            ),
            shell=_resolve_shell(
                os.getenv("OPSAGENT_SHELL")
                or _to_optional_string(file_config.get("shell"))
            ),
            working_directory=(
                os.getenv("OPSAGENT_CWD")
                or _to_optional_string(file_config.get("cwd"))
            ),
            fleet_inventory=(
                os.getenv("OPSAGENT_INVENTORY")
                or _to_optional_string(fleet.get("inventory"))
                or DEFAULT_INVENTORY_FILE
            ),
            fleet_concurrency=_to_positive_int(
                os.getenv("OPSAGENT_FLEET_CONCURRENCY") or fleet.get("concurrency"),
                default=10,
            ),
            fleet_connect_timeout=_to_positive_int(
                os.getenv("OPSAGENT_FLEET_CONNECT_TIMEOUT") or fleet.get("connect_timeout"),
                default=10,
            ),
            fleet_command_timeout=_to_positive_float(
                os.getenv("OPSAGENT_FLEET_COMMAND_TIMEOUT") or fleet.get("command_timeout"),
                default=600.0,
            ),
        )


def _section(file_config: dict[str, object], name: str) -> dict[str, object]:
    value = file_config.get(name)
    return value if isinstance(value, dict) else {}


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("OPSAGENT_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("opsagent.config.json")
    local_override = _load_file_config("opsagent.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _resolve_shell(value: str | None) -> str:
    if value is None:
        return "bash"
    normalized = value.strip().lower()
    return "sh" if normalized == "sh" else "bash"


def _to_log_level(value: object) -> str:
    if isinstance(value, str):
        normalized = value.strip().upper()
        if normalized in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            return normalized
    return "WARNING"


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default


def _to_positive_float(value: object, *, default: float) -> float:
    parsed = _to_optional_positive_float(value)
    return default if parsed is None else parsed


def _to_optional_positive_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None

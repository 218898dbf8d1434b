import json
import os

import pytest

from opsagent.config import AppConfig

_PROVIDER_ENV = (
    "GEMINI_API_KEY",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GOOGLE_CLOUD_PROJECT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("OPSAGENT_") or name in _PROVIDER_ENV:
            monkeypatch.delenv(name, raising=False)


def test_defaults_without_any_config(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_env()

    assert config.default_engine == "gemini"
    assert config.fallback_engine == "web_session"
    assert config.analysis_engine is None
    assert config.log_level == "WARNING"
    assert config.max_retries == 3
    assert config.history_summary_size == 3
    assert config.redact_prompts is True
    assert config.shell == "bash"
    assert config.command_timeout is None
    assert config.fleet_concurrency == 10
    assert config.fleet_inventory == "inventory.json"


def test_provider_sections_load_from_file(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "opsagent.config.json"
    config_path.write_text(
        json.dumps(
            {
                "default_engine": "claude",
                "gemini": {"api_key": "g-key", "model": "gemini-2.0-pro"},
                "claude": {"api_key": "c-key"},
                "vertex_ai": {"project_id": "proj", "region": "europe-west4"},
                "web_session": {"psid": "cookie"},
                "fleet": {"concurrency": 4, "inventory": "hosts.json"},
                "log_dir": "test-logs",
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("OPSAGENT_CONFIG_FILE", str(config_path))

    config = AppConfig.from_env()

    assert config.default_engine == "claude"
    assert config.gemini_api_key == "g-key"
    assert config.gemini_model == "gemini-2.0-pro"
    assert config.claude_api_key == "c-key"
    assert config.vertex_project_id == "proj"
    assert config.vertex_region == "europe-west4"
    assert config.web_psid == "cookie"
    assert config.fleet_concurrency == 4
    assert config.fleet_inventory == "hosts.json"
    assert config.log_dir == "test-logs"


def test_env_overrides_file_values(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "opsagent.config.json"
    config_path.write_text(
        json.dumps({"gemini": {"api_key": "file-key"}, "max_retries": 5, "log_level": "info"}),
        encoding="utf-8",
    )
    monkeypatch.setenv("OPSAGENT_CONFIG_FILE", str(config_path))
    monkeypatch.setenv("OPSAGENT_GEMINI_API_KEY", "env-key")
    monkeypatch.setenv("OPSAGENT_MAX_RETRIES", "2")

    config = AppConfig.from_env()

    assert config.gemini_api_key == "env-key"
    assert config.max_retries == 2
    assert config.log_level == "INFO"


def test_invalid_values_fall_back_to_defaults(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "opsagent.config.json"
    config_path.write_text(
        json.dumps(
            {
                "max_retries": -1,
                "history_summary_size": "lots",
                "request_timeout": 0,
                "command_timeout": "soon",
                "log_level": "chatty",
                "redact_prompts": "maybe",
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("OPSAGENT_CONFIG_FILE", str(config_path))

    config = AppConfig.from_env()

    assert config.max_retries == 3
    assert config.history_summary_size == 3
    assert config.request_timeout == 60.0
    assert config.command_timeout is None
    assert config.log_level == "WARNING"
    assert config.redact_prompts is True


def test_redact_prompts_loads_from_file_and_env(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "opsagent.config.json"
    config_path.write_text(json.dumps({"redact_prompts": False}), encoding="utf-8")
    monkeypatch.setenv("OPSAGENT_CONFIG_FILE", str(config_path))

    assert AppConfig.from_env().redact_prompts is False

    monkeypatch.setenv("OPSAGENT_REDACT_PROMPTS", "on")

    assert AppConfig.from_env().redact_prompts is True


def test_runtime_options_load_from_file_and_env(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "opsagent.config.json"
    config_path.write_text(
        json.dumps({"shell": "sh", "cwd": "./test-dir", "command_timeout": 30}),
        encoding="utf-8",
    )
    monkeypatch.setenv("OPSAGENT_CONFIG_FILE", str(config_path))

    file_config = AppConfig.from_env()
    assert file_config.shell == "sh"
    assert file_config.working_directory == "./test-dir"
    assert file_config.command_timeout == 30.0

    monkeypatch.setenv("OPSAGENT_SHELL", "bash")
    monkeypatch.setenv("OPSAGENT_CWD", "~/project")
    monkeypatch.setenv("OPSAGENT_COMMAND_TIMEOUT", "2.5")

    env_config = AppConfig.from_env()
    assert env_config.shell == "bash"
    assert env_config.working_directory == "~/project"
    assert env_config.command_timeout == 2.5


def test_local_config_auto_loaded_without_env_override(tmp_path, monkeypatch) -> None:
    (tmp_path / "opsagent.config.json").write_text(
        json.dumps(
            {
                "openai": {"api_url": "https://example.invalid/base", "api_key": "base-key"},
                "max_retries": 3,
            }
        ),
        encoding="utf-8",
    )
    (tmp_path / "opsagent.config.local.json").write_text(
        json.dumps({"openai": {"api_key": "local-key"}, "max_retries": 1}),
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_env()

    assert config.openai_api_key == "local-key"
    assert config.openai_api_url == "https://example.invalid/base"
    assert config.max_retries == 1


def test_explicit_config_file_disables_local_auto_merge(tmp_path, monkeypatch) -> None:
    explicit_path = tmp_path / "custom.config.json"
    explicit_path.write_text(json.dumps({"max_retries": 2}), encoding="utf-8")
    (tmp_path / "opsagent.config.local.json").write_text(
        json.dumps({"max_retries": 9}),
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OPSAGENT_CONFIG_FILE", str(explicit_path))

    config = AppConfig.from_env()

    assert config.max_retries == 2


def test_unreadable_config_file_is_treated_as_empty(tmp_path, monkeypatch) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("OPSAGENT_CONFIG_FILE", str(broken))

    config = AppConfig.from_env()

    assert config.default_engine == "gemini"

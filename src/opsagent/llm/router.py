"""Engine selection and quota-cooldown fallback between generation backends."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

from opsagent.agent.models import HostContext
from opsagent.config import AppConfig
from opsagent.llm.client import (
    ClaudeBackend,
    GeminiBackend,
    GenerationBackend,
    OpenAIBackend,
    VertexAIBackend,
    WebSessionBackend,
)
from opsagent.llm.errors import ProviderInitError, QuotaExceeded
from opsagent.llm.offline import MockBackend, OfflineBackend
from opsagent.llm.prompts import HISTORY_SUMMARY_HEADER
from opsagent.persistence import HistoryStore, QuotaStore

LOGGER = logging.getLogger(__name__)

COOLDOWN_SECONDS = 3600
LONG_QUERY_CHARS = 1000
ANALYSIS_KEYWORDS = ("analyze", "debug", "why")


class Engine(str, Enum):
    GEMINI = "gemini"
    VERTEX_AI = "vertex_ai"
    CLAUDE = "claude"
    OPENAI = "openai"
    WEB_SESSION = "web_session"
    OFFLINE = "offline"
    MOCK = "mock"


ENGINE_ALIASES: dict[str, Engine] = {
    "gemini": Engine.GEMINI,
    "vertex_ai": Engine.VERTEX_AI,
    "vertexai": Engine.VERTEX_AI,
    "claude": Engine.CLAUDE,
    "openai": Engine.OPENAI,
    "gpt": Engine.OPENAI,
    "offline": Engine.OFFLINE,
    "web": Engine.WEB_SESSION,
    "websession": Engine.WEB_SESSION,
    "web_session": Engine.WEB_SESSION,
    "mock": Engine.MOCK,
}

BackendFactory = Callable[[Engine], GenerationBackend]
Clock = Callable[[], float]


def parse_engine(value: str | None) -> Engine | None:
    if not value:
        return None
    return ENGINE_ALIASES.get(value.strip().lower())


def create_backend(engine: Engine, config: AppConfig) -> GenerationBackend:
    """Build the backend for ``engine``; raises ``ProviderInitError`` on missing setup."""
    timeout = config.request_timeout
    if engine is Engine.GEMINI:
        return GeminiBackend(
            api_key=config.gemini_api_key, model=config.gemini_model, timeout=timeout
        )
    if engine is Engine.VERTEX_AI:
        return VertexAIBackend(
            oauth_token=config.vertex_oauth_token,
            project_id=config.vertex_project_id,
            region=config.vertex_region,
            model=config.vertex_model,
            timeout=timeout,
        )
    if engine is Engine.CLAUDE:
        return ClaudeBackend(
            api_key=config.claude_api_key, model=config.claude_model, timeout=timeout
        )
    if engine is Engine.OPENAI:
        return OpenAIBackend(
            api_key=config.openai_api_key,
            model=config.openai_model,
            api_url=config.openai_api_url,
            reasoning_effort=config.openai_reasoning_effort,
            timeout=timeout,
        )
    if engine is Engine.WEB_SESSION:
        return WebSessionBackend(
            psid=config.web_psid,
            papisid=config.web_papisid,
            user_agent=config.web_user_agent,
            timeout=timeout,
        )
    if engine is Engine.OFFLINE:
        return OfflineBackend()
    if engine is Engine.MOCK:
        return MockBackend()
    raise ProviderInitError(f"Unsupported engine: {engine}")


class RouterCore:
    """Selects an engine per request and falls back while the primary is rate limited.

    The quota record is read on every decision and never cached, so several
    processes sharing one state directory agree on the cooldown.
    """

    def __init__(
        self,
        backend_factory: BackendFactory,
        quota_store: QuotaStore,
        *,
        history: HistoryStore | None = None,
        clock: Clock = time.time,
        primary: Engine = Engine.GEMINI,
        fallback: Engine = Engine.WEB_SESSION,
        analysis: Engine | None = None,
        long_query: Engine | None = None,
        summary_size: int = 3,
        cooldown_seconds: int = COOLDOWN_SECONDS,
    ) -> None:
        self.backend_factory = backend_factory
        self.quota_store = quota_store
        self.history = history
        self.clock = clock
        self.primary = primary
        self.fallback = fallback
        self.analysis = analysis or primary
        self.long_query = long_query or primary
        self.summary_size = summary_size
        self.cooldown_seconds = cooldown_seconds

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        quota_store: QuotaStore,
        *,
        history: HistoryStore | None = None,
        clock: Clock = time.time,
    ) -> RouterCore:
        return cls(
            lambda engine: create_backend(engine, config),
            quota_store,
            history=history,
            clock=clock,
            primary=_configured_engine(config.default_engine, Engine.GEMINI),
            fallback=_configured_engine(config.fallback_engine, Engine.WEB_SESSION),
            analysis=parse_engine(config.analysis_engine),
            long_query=parse_engine(config.long_query_engine),
            summary_size=config.history_summary_size,
        )

    def resolve(self, query: str, explicit_preference: str | None = None) -> Engine:
        if explicit_preference:
            forced = parse_engine(explicit_preference)
            if forced is not None:
                LOGGER.debug("router_engine_forced", extra={"engine": forced.value})
                return forced
            LOGGER.warning(
                "router_unknown_engine_ignored",
                extra={"preference": explicit_preference},
            )

        lowered = query.lower()
        if any(keyword in lowered for keyword in ANALYSIS_KEYWORDS):
            LOGGER.debug("router_analysis_query", extra={"engine": self.analysis.value})
            return self.analysis
        if len(query) > LONG_QUERY_CHARS:
            LOGGER.debug("router_long_query", extra={"engine": self.long_query.value})
            return self.long_query
        return self.primary

    def get_provider(self, engine: Engine) -> GenerationBackend:
        LOGGER.info("router_provider_init", extra={"engine": engine.value})
        try:
            return self.backend_factory(engine)
        except ProviderInitError as exc:
            if engine is not self.primary:
                raise
            LOGGER.warning(
                "router_primary_unavailable_using_offline",
                extra={"engine": engine.value, "error": exc.message},
            )
            return OfflineBackend()

    def in_cooldown(self, last_exhausted_at: int | None, now: float) -> bool:
        return last_exhausted_at is not None and now - last_exhausted_at < self.cooldown_seconds

    def generate_with_fallback(
        self,
        context: HostContext | None,
        query: str,
        explicit_preference: str | None = None,
        *,
        routing_query: str | None = None,
    ) -> str:
        last_exhausted_at = self.quota_store.read()
        now = self.clock()

        if self.in_cooldown(last_exhausted_at, now):
            LOGGER.info(
                "quota_cooldown_active",
                extra={
                    "engine": self.fallback.value,
                    "remaining_seconds": int(self.cooldown_seconds - (now - last_exhausted_at)),
                },
            )
            return self._invoke_fallback(context, query)

        # Routing looks at the request alone; the prompt also carries history.
        routing_text = query if routing_query is None else routing_query
        engine = self.resolve(routing_text, explicit_preference)
        LOGGER.info("router_engine_selected", extra={"engine": engine.value})
        provider = self.get_provider(engine)
        try:
            response = provider.generate(context, query)
        except QuotaExceeded:
            if engine is self.fallback:
                raise
            exhausted_at = int(self.clock())
            LOGGER.warning(
                "quota_exhausted_switching_to_fallback",
                extra={"engine": engine.value, "fallback": self.fallback.value},
            )
            self._persist(exhausted_at)
            return self._invoke_fallback(context, query)

        if last_exhausted_at is not None and engine is not self.fallback:
            LOGGER.info("quota_cooldown_cleared", extra={"engine": engine.value})
            self._persist(None)
        return response

    def _invoke_fallback(self, context: HostContext | None, query: str) -> str:
        provider = self.get_provider(self.fallback)
        return provider.generate(context, self._with_history_summary(query))

    def _with_history_summary(self, query: str) -> str:
        if self.history is None or self.summary_size <= 0:
            return query
        commands = self.history.recent(self.summary_size)
        if not commands:
            return query
        lines = [HISTORY_SUMMARY_HEADER]
        lines.extend(f"- {command}" for command in commands)
        lines.append("")
        lines.append(query)
        return "\n".join(lines)

    def _persist(self, value: int | None) -> None:
        try:
            self.quota_store.write(value)
        except OSError as exc:
            LOGGER.warning("quota_state_write_failed", extra={"error": str(exc)})


def _configured_engine(value: str | None, default: Engine) -> Engine:
    engine = parse_engine(value)
    if engine is None:
        if value:
            LOGGER.warning("config_unknown_engine", extra={"engine": value})
        return default
    return engine

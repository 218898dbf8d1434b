"""HTTP command-generation backends.

Every backend turns ``(context, prompt)`` into the raw text of a directive and
maps transport and HTTP failures onto the provider error taxonomy.
"""

from __future__ import annotations

import abc
import json
import logging
from urllib import parse, request
from urllib.error import HTTPError, URLError

from opsagent.agent.models import HostContext, RiskLevel
from opsagent.llm.errors import (
    AuthError,
    NetworkError,
    ProviderInitError,
    QuotaExceeded,
    UnknownProviderError,
)
from opsagent.llm.prompts import build_request_text, build_system_prompt, strip_markdown_fences

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
OPENAI_API_URL = "https://api.openai.com/v1/responses"
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
WEB_SESSION_URL = (
    "https://gemini.google.com/app/_/BardChatUi/data/"
    "assistant.lamda.BardFrontendService/StreamGenerateContent"
)
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_QUOTA_STATUSES = {"RESOURCE_EXHAUSTED", "RATE_LIMIT_EXCEEDED"}
_QUOTA_MARKERS = ("quota", "rate limit")

DIRECTIVE_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "thought": {"type": "string"},
        "command": {"type": "string"},
        "explanation": {"type": "string"},
        "risk_level": {"type": "string", "enum": [level.value for level in RiskLevel]},
        "needs_clarification": {"type": "boolean"},
    },
    "required": ["thought", "command", "explanation", "risk_level", "needs_clarification"],
    "additionalProperties": False,
}


class GenerationBackend(abc.ABC):
    """A command-generation engine."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly backend name."""

    @abc.abstractmethod
    def generate(self, context: HostContext | None, prompt: str) -> str:
        """Return the raw directive text for ``prompt``."""


class HttpBackend(GenerationBackend):
    """Shared JSON-over-HTTP plumbing."""

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def _post_json(
        self,
        url: str,
        payload: dict[str, object],
        headers: dict[str, str] | None = None,
    ) -> object:
        body = json.dumps(payload).encode("utf-8")
        all_headers = {"Content-Type": "application/json", **(headers or {})}
        LOGGER.debug(
            "llm_request_prepared",
            extra={"backend": self.name, "payload_bytes": len(body)},
        )
        req = request.Request(url, data=body, headers=all_headers, method="POST")
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                raw = resp.read().decode("utf-8")
        except HTTPError as exc:
            raise self._map_http_error(exc) from exc
        except URLError as exc:
            LOGGER.error(
                "llm_request_transport_error",
                extra={"backend": self.name, "reason": str(exc.reason)},
            )
            raise NetworkError(str(exc.reason), engine=self.name) from exc
        except TimeoutError as exc:
            LOGGER.error(
                "llm_request_timeout",
                extra={"backend": self.name, "timeout_seconds": self.timeout},
            )
            raise NetworkError(
                f"request timed out after {self.timeout:.1f}s", engine=self.name
            ) from exc
        except UnicodeDecodeError as exc:
            raise UnknownProviderError(f"Response decoding error: {exc}", engine=self.name) from exc
        return self._decode_body(raw)

    def _decode_body(self, raw: str) -> object:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.error(
                "llm_response_parse_error",
                extra={"backend": self.name, "error": str(exc)},
            )
            raise UnknownProviderError(f"JSON Parse Error: {exc}", engine=self.name) from exc

    def _map_http_error(self, exc: HTTPError) -> Exception:
        body = _read_error_body(exc)
        status, message = _google_error_fields(body)
        LOGGER.error(
            "llm_request_http_error",
            extra={
                "backend": self.name,
                "http_status": exc.code,
                "reason": exc.reason,
                "response_excerpt": _excerpt(body),
            },
        )
        lowered = message.lower()
        if status in _QUOTA_STATUSES or any(marker in lowered for marker in _QUOTA_MARKERS):
            return QuotaExceeded(message or status, engine=self.name)
        if exc.code == 429:
            return QuotaExceeded(f"HTTP {exc.code}", engine=self.name)
        if exc.code in (401, 403):
            return AuthError(message or _excerpt(body) or f"HTTP {exc.code}", engine=self.name)
        details = f"Status: {exc.code} {exc.reason}"
        if body:
            details = f"{details}, Body: {_excerpt(body)}"
        return UnknownProviderError(details, engine=self.name)


class GeminiBackend(HttpBackend):
    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "gemini-2.5-flash",
        api_base: str = GEMINI_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        if not api_key:
            raise ProviderInitError("No authentication found (API key)", engine="Google Gemini")
        self.api_key = api_key
        self.model = model.removeprefix("models/")
        self.api_base = api_base.rstrip("/")

    @property
    def name(self) -> str:
        return "Google Gemini"

    def generate(self, context: HostContext | None, prompt: str) -> str:
        query = parse.urlencode({"key": self.api_key})
        url = f"{self.api_base}/{self.model}:generateContent?{query}"
        payload = {"contents": [{"parts": [{"text": build_request_text(context, prompt)}]}]}
        return strip_markdown_fences(_candidate_text(self._post_json(url, payload), "{}"))


class VertexAIBackend(HttpBackend):
    def __init__(
        self,
        *,
        oauth_token: str | None,
        project_id: str | None,
        region: str = "us-central1",
        model: str = "gemini-2.5-flash",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        if not oauth_token:
            raise ProviderInitError("Vertex AI requires an OAuth access token", engine="Vertex AI")
        if not project_id:
            raise ProviderInitError("Vertex AI requires a project id", engine="Vertex AI")
        self.oauth_token = oauth_token
        self.project_id = project_id
        self.region = region
        self.model = model

    @property
    def name(self) -> str:
        return "Vertex AI"

    def build_url(self) -> str:
        return (
            f"https://{self.region}-aiplatform.googleapis.com/v1/projects/{self.project_id}"
            f"/locations/{self.region}/publishers/google/models/{self.model}:generateContent"
        )

    def generate(self, context: HostContext | None, prompt: str) -> str:
        payload = {
            "contents": [
                {"role": "user", "parts": [{"text": build_request_text(context, prompt)}]}
            ],
            "generationConfig": {"temperature": 0.7, "maxOutputTokens": 2048},
        }
        raw = self._post_json(
            self.build_url(), payload, {"Authorization": f"Bearer {self.oauth_token}"}
        )
        return strip_markdown_fences(_candidate_text(raw, "{}"))


class OpenAIBackend(HttpBackend):
    """Responses API client with a strict JSON schema for directives."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "gpt-5.2",
        api_url: str = OPENAI_API_URL,
        reasoning_effort: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        if not api_key:
            raise ProviderInitError("No OpenAI API key configured", engine="OpenAI")
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.reasoning_effort = reasoning_effort

    @property
    def name(self) -> str:
        return "OpenAI"

    def build_payload(self, context: HostContext | None, prompt: str) -> dict[str, object]:
        payload: dict[str, object] = {
            "model": self.model,
            "input": [
                {"role": "system", "content": build_system_prompt(context)},
                {"role": "user", "content": prompt},
            ],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "directive",
                    "strict": True,
                    "schema": DIRECTIVE_SCHEMA,
                }
            },
        }
        if self.reasoning_effort:
            payload["reasoning"] = {"effort": self.reasoning_effort}
        return payload

    def generate(self, context: HostContext | None, prompt: str) -> str:
        raw = self._post_json(
            self.api_url,
            self.build_payload(context, prompt),
            {"Authorization": f"Bearer {self.api_key}"},
        )
        text = extract_output_text(raw)
        if text is None:
            raise UnknownProviderError("No structured output returned", engine=self.name)
        return text


class ClaudeBackend(HttpBackend):
    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "claude-sonnet-4-5",
        api_url: str = ANTHROPIC_API_URL,
        max_tokens: int = 2048,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        if not api_key:
            raise ProviderInitError("No Anthropic API key configured", engine="Claude")
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.max_tokens = max_tokens

    @property
    def name(self) -> str:
        return "Claude"

    def generate(self, context: HostContext | None, prompt: str) -> str:
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": build_system_prompt(context),
            "messages": [{"role": "user", "content": prompt}],
        }
        raw = self._post_json(
            self.api_url,
            payload,
            {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION},
        )
        if isinstance(raw, dict):
            for block in raw.get("content") or []:
                if isinstance(block, dict) and block.get("type") == "text":
                    return strip_markdown_fences(str(block.get("text", "")))
        raise UnknownProviderError("No text content returned", engine=self.name)


class WebSessionBackend(HttpBackend):
    """Cookie-authenticated web session channel, used as the quota fallback."""

    def __init__(
        self,
        *,
        psid: str | None,
        papisid: str | None = None,
        user_agent: str | None = None,
        url: str = WEB_SESSION_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        if not psid:
            raise ProviderInitError(
                "Web Session requires the __Secure-1PSID cookie", engine="Gemini Web Session"
            )
        self.psid = psid
        self.papisid = papisid
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.url = url

    @property
    def name(self) -> str:
        return "Gemini Web Session"

    def _cookie_header(self) -> str:
        cookie = f"__Secure-1PSID={self.psid}"
        if self.papisid:
            cookie = f"{cookie}; __Secure-1PAPISID={self.papisid}"
        return cookie

    def generate(self, context: HostContext | None, prompt: str) -> str:
        headers = {
            "Cookie": self._cookie_header(),
            "User-Agent": self.user_agent,
            "Referer": "https://gemini.google.com/",
        }
        raw = self._post_json(self.url, {"input": build_request_text(context, prompt)}, headers)
        directive = _find_directive(raw)
        if directive is None:
            LOGGER.warning("web_session_no_directive", extra={"engine": self.name})
            raise UnknownProviderError("Web session returned no directive.", engine=self.name)
        return json.dumps(directive)

    def _decode_body(self, raw: str) -> object:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise UnknownProviderError(
                "Received non-JSON response from the web session endpoint.", engine=self.name
            ) from exc


def _find_directive(payload: object) -> dict[str, object] | None:
    """Locate a directive object, either at the top level or as JSON text in a string field."""
    if not isinstance(payload, dict):
        return None
    if "command" in payload:
        return payload
    for key in ("text", "output", "response"):
        value = payload.get(key)
        if not isinstance(value, str):
            continue
        try:
            parsed = json.loads(strip_markdown_fences(value))
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict) and "command" in parsed:
            return parsed
    return None


def extract_output_text(payload: object) -> str | None:
    """Return the first ``output_text`` item of a Responses API payload."""
    if not isinstance(payload, dict):
        return None
    output_items = payload.get("output")
    if not isinstance(output_items, list):
        return None
    for item in output_items:
        if not isinstance(item, dict):
            continue
        content_items = item.get("content")
        if not isinstance(content_items, list):
            continue
        for content in content_items:
            if not isinstance(content, dict):
                continue
            text = content.get("text")
            if content.get("type") == "output_text" and isinstance(text, str):
                return text
    return None


def _candidate_text(payload: object, default: str) -> str:
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]  # type: ignore[index]
    except (KeyError, IndexError, TypeError):
        return default
    return text if isinstance(text, str) else default


def _read_error_body(exc: HTTPError) -> str:
    if exc.fp is None:
        return ""
    try:
        raw = exc.read()
    except OSError:
        return ""
    if not raw:
        return ""
    return raw.decode("utf-8", errors="replace")


def _google_error_fields(body: str) -> tuple[str, str]:
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        return "", ""
    if not isinstance(parsed, dict) or not isinstance(parsed.get("error"), dict):
        return "", ""
    error = parsed["error"]
    status = error.get("status")
    message = error.get("message")
    return (
        status if isinstance(status, str) else "",
        message if isinstance(message, str) else "",
    )


def _excerpt(body: str, *, max_chars: int = 500) -> str:
    excerpt = body.replace("\n", " ").strip()
    if len(excerpt) > max_chars:
        return f"{excerpt[:max_chars]}..."
    return excerpt

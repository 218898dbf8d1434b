"""Errors raised by command-generation backends."""

from __future__ import annotations


class ProviderError(Exception):
    """Base class for generation backend failures."""

    def __init__(self, message: str = "", *, engine: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.engine = engine

    def user_message(self) -> str:
        return f"AI Error ({self._source()}): {self.message or 'unknown failure'}"

    def _source(self) -> str:
        return self.engine or "provider"


class QuotaExceeded(ProviderError):
    def user_message(self) -> str:
        return f"{self._source()} quota exhausted. Try again later or pick another engine."


class AuthError(ProviderError):
    def user_message(self) -> str:
        return (
            f"Authentication with {self._source()} failed: {self.message}. "
            "Re-authenticate (check the API key, token or session cookie) and try again."
        )


class NetworkError(ProviderError):
    def user_message(self) -> str:
        return (
            f"Could not reach {self._source()}: {self.message}. "
            "Check network connectivity and retry."
        )


class UnknownProviderError(ProviderError):
    pass


class ProviderInitError(ProviderError):
    """Raised when a backend is missing credentials or configuration."""

    def user_message(self) -> str:
        return f"Provider Error: {self._source()} is not configured: {self.message}"

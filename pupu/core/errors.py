from __future__ import annotations

from typing import Any, Dict


def error_response(code: str, message: str, *, details: Any | None = None, trace_id: str | None = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details is not None:
        payload["error"]["details"] = details
    if trace_id is not None:
        payload["error"]["trace_id"] = trace_id
    return payload


class PupuError(Exception):
    """Base class for server-side failures."""


class AuthenticationRequired(PupuError):
    pass


class ProviderError(PupuError):
    """A text-generation provider could not produce a reply."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class UnsupportedProviderError(ProviderError):
    pass


class SearchUnavailableError(PupuError):
    pass


class SpeechSynthesisError(PupuError):
    """The hosted voice service rejected or failed a synthesis request."""

    def __init__(self, message: str, *, status_code: int | None = None, details: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class KeyStoreError(PupuError):
    """Reading or writing the per-user key table failed."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code

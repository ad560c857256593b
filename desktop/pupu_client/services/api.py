"""HTTP client used to talk to the PUPU server."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

import httpx

from ..config.settings import AppSettings
from .schemas import ChatMessage, ChatReply, SpeechReply


class ApiError(RuntimeError):
    """The server answered, but not with a usable reply."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class AuthTokens:
    access_token: str | None
    csrf_token: str | None


class PupuAPI:
    """Async client for the PUPU server."""

    def __init__(self, settings: AppSettings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        timeout = httpx.Timeout(settings.server.timeout, connect=15.0)
        self._client = httpx.AsyncClient(
            base_url=settings.server.base_url,
            verify=settings.server.verify_ssl,
            timeout=timeout,
            transport=transport,
        )
        self._tokens = AuthTokens(access_token=settings.server.access_token, csrf_token=None)

    @property
    def signed_in(self) -> bool:
        return bool(self._tokens.access_token)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._tokens.access_token:
            headers["Authorization"] = f"Bearer {self._tokens.access_token}"
        if self._tokens.csrf_token:
            headers["X-CSRF-Token"] = self._tokens.csrf_token
        return headers

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            snippet = response.text[:200]
            raise ApiError(
                f"Server responded with non-JSON or empty body: {snippet or '<empty>'}",
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise ApiError("Unexpected response shape from server", status_code=response.status_code)
        return data

    @staticmethod
    def _raise_error(response: httpx.Response, data: dict[str, Any], action: str) -> None:
        """Raise ``ApiError`` with the server message from either error envelope."""
        detail = data.get("detail")
        error = detail.get("error") if isinstance(detail, dict) else data.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        raise ApiError(error or f"HTTP {response.status_code}: {action} failed", status_code=response.status_code)

    async def login(self, email: str, password: str) -> dict[str, Any]:
        """Password sign-in, storing the bearer and CSRF tokens for later calls."""
        response = await self._client.post("/auth/login", json={"email": email, "password": password})
        data = self._json(response)
        if response.is_error:
            self._raise_error(response, data, "login")
        self._tokens = AuthTokens(access_token=data.get("access_token"), csrf_token=data.get("csrf_token"))
        self.settings.server.email = email
        self.settings.server.access_token = self._tokens.access_token
        return data

    async def logout(self) -> None:
        """Sign out on the server. Local tokens are dropped even if that call fails."""
        try:
            await self._client.post("/auth/logout", headers=self._headers())
        finally:
            self._client.cookies.clear()
            self._tokens = AuthTokens(access_token=None, csrf_token=None)
            self.settings.server.access_token = None

    async def chat(
        self,
        history: Iterable[ChatMessage],
        query: str,
        *,
        provider: str,
        gemini_model: str | None = None,
    ) -> ChatReply:
        payload = {
            "messages": [m.to_payload() for m in history],
            "query": query,
            "aiProvider": provider,
            "geminiModel": gemini_model,
        }
        response = await self._client.post("/api/chat", json=payload, headers=self._headers())
        data = self._json(response)
        if response.is_error:
            message = data.get("details") or data.get("response")
            raise ApiError(
                message if message else f"HTTP {response.status_code}: Unknown server error.",
                status_code=response.status_code,
            )
        if not data.get("response"):
            raise ApiError("No response from AI service", status_code=response.status_code)
        return ChatReply.from_payload(data)

    async def speech(self, text: str, *, voice: str = "elevenlabs") -> SpeechReply:
        response = await self._client.post("/api/speech", json={"text": text, "voice": voice}, headers=self._headers())
        content_type = response.headers.get("content-type", "")
        if response.is_success and content_type.startswith("audio/"):
            return SpeechReply(audio=response.content, content_type=content_type, text=text)
        data = self._json(response)
        return SpeechReply(
            text=str(data.get("text") or text),
            fallback=bool(data.get("fallback", response.is_error)),
            error=data.get("error"),
            details=data.get("details"),
        )

    async def self_test(self, service: str = "all", *, gemini_model: str | None = None) -> dict[str, Any]:
        response = await self._client.post(
            "/api/test",
            json={"service": service, "geminiModel": gemini_model},
            headers=self._headers(),
        )
        data = self._json(response)
        if response.status_code == 401:
            raise ApiError(str(data.get("error")), status_code=401)
        return data

    async def environment(self) -> dict[str, Any]:
        response = await self._client.get("/api/test")
        return self._json(response)

    async def get_keys(self) -> dict[str, Any]:
        response = await self._client.get("/api/keys", headers=self._headers())
        data = self._json(response)
        if response.is_error:
            self._raise_error(response, data, "loading keys")
        return data

    async def save_keys(self, keys: dict[str, str | None]) -> dict[str, Any]:
        response = await self._client.put("/api/keys", json=keys, headers=self._headers())
        data = self._json(response)
        if response.is_error:
            self._raise_error(response, data, "saving keys")
        return data

    async def ping(self) -> bool:
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

"""Client for the hosted auth service (Supabase GoTrue REST API)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from pupu.core.config import Settings
from pupu.core.errors import AuthenticationRequired, PupuError
from pupu.core.logger import get_logger


logger = get_logger("audit")


@dataclass(slots=True)
class AuthUser:
    """Authenticated caller, as resolved from an access token."""

    id: str
    email: str | None = None
    access_token: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AuthSession:
    access_token: str
    refresh_token: str | None
    expires_in: int | None
    user: AuthUser

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AuthSession":
        token = payload.get("access_token")
        user = payload.get("user") or {}
        if not token or not user.get("id"):
            raise AuthenticationRequired("Auth service returned an incomplete session")
        return cls(
            access_token=str(token),
            refresh_token=payload.get("refresh_token"),
            expires_in=payload.get("expires_in"),
            user=AuthUser(id=str(user["id"]), email=user.get("email"), access_token=str(token)),
        )


class HostedAuth:
    """Thin wrapper over the GoTrue endpoints the server needs."""

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        if not settings.supabase_url or not settings.supabase_anon_key:
            raise PupuError("Hosted auth is not configured (SUPABASE_URL / SUPABASE_ANON_KEY)")
        self._base_url = settings.supabase_url.rstrip("/") + "/auth/v1"
        self._anon_key = settings.supabase_anon_key
        self._timeout = settings.auth_timeout_sec
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"apikey": self._anon_key},
            transport=self._transport,
        )

    async def get_user(self, access_token: str) -> AuthUser | None:
        async with self._client() as client:
            resp = await client.get("/user", headers={"Authorization": f"Bearer {access_token}"})
        if resp.status_code in (401, 403):
            return None
        resp.raise_for_status()
        data = resp.json()
        if not data.get("id"):
            return None
        return AuthUser(id=str(data["id"]), email=data.get("email"), access_token=access_token)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        async with self._client() as client:
            resp = await client.post(
                "/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
            )
        if resp.status_code in (400, 401, 422):
            raise AuthenticationRequired("invalid credentials")
        resp.raise_for_status()
        return AuthSession.from_payload(resp.json())

    async def exchange_code_for_session(self, code: str, code_verifier: str | None = None) -> AuthSession:
        payload: dict[str, Any] = {"auth_code": code}
        if code_verifier:
            payload["code_verifier"] = code_verifier
        async with self._client() as client:
            resp = await client.post("/token", params={"grant_type": "pkce"}, json=payload)
        if resp.status_code in (400, 401, 422):
            raise AuthenticationRequired("invalid or expired auth code")
        resp.raise_for_status()
        return AuthSession.from_payload(resp.json())

    async def sign_out(self, access_token: str) -> None:
        async with self._client() as client:
            resp = await client.post("/logout", headers={"Authorization": f"Bearer {access_token}"})
        if resp.status_code >= 400:
            logger.warning("sign-out rejected by auth service", extra={"status": resp.status_code})

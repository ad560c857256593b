from __future__ import annotations

import time
from typing import Tuple

import httpx
from fastapi import APIRouter, HTTPException, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from pupu.core.config import Settings, get_settings
from pupu.core.errors import AuthenticationRequired, PupuError, error_response
from pupu.core.identity import AuthSession, HostedAuth
from pupu.core.logger import get_logger
from pupu.core.security import access_token_from, generate_csrf_token

router = APIRouter(prefix="/auth", tags=["auth"])
audit = get_logger("audit")


ATTEMPTS: dict[Tuple[str, str], Tuple[int, float]] = {}
MAX_ATTEMPTS = 5
COOLDOWN_S = [600, 1800, 3600]  # 10min, 30min, 60min


def _register_failure(user: str, ip: str) -> float:
    now = time.time()
    count, until = ATTEMPTS.get((user, ip), (0, 0.0))
    count += 1
    delay = COOLDOWN_S[min(max(0, count - MAX_ATTEMPTS), len(COOLDOWN_S) - 1)] if count > MAX_ATTEMPTS else 0
    until = now + delay if delay else 0.0
    ATTEMPTS[(user, ip)] = (count, until)
    return until


def _is_locked(user: str, ip: str) -> float:
    now = time.time()
    count, until = ATTEMPTS.get((user, ip), (0, 0.0))
    if until and now < until:
        return until - now
    return 0.0


class LoginIn(BaseModel):
    email: str
    password: str


def _hosted_auth(settings: Settings) -> HostedAuth:
    try:
        return HostedAuth(settings)
    except PupuError as exc:
        raise HTTPException(status_code=503, detail=error_response("PUPU_5030", str(exc))) from exc


def _set_session_cookies(response: Response, session: AuthSession, settings: Settings) -> None:
    response.set_cookie(
        key="access_token",
        value=session.access_token,
        httponly=True,
        samesite=settings.cookie_samesite,
        secure=settings.cookie_secure,
        max_age=session.expires_in,
    )
    if session.refresh_token:
        response.set_cookie(
            key="refresh_token",
            value=session.refresh_token,
            httponly=True,
            samesite=settings.cookie_samesite,
            secure=settings.cookie_secure,
        )


@router.post("/login")
async def login(data: LoginIn, request: Request, response: Response) -> dict:
    """Password sign-in against the hosted auth service, cookie session + CSRF token."""
    settings = get_settings()
    client_ip = request.client.host if request.client else "?"
    email = data.email.strip().lower()
    if _is_locked(email, client_ip) > 0:
        raise HTTPException(status_code=429, detail=error_response("PUPU_0001", "Too many attempts. Try later."))

    auth = _hosted_auth(settings)
    try:
        session = await auth.sign_in_with_password(email, data.password)
    except AuthenticationRequired:
        until = _register_failure(email, client_ip)
        audit.info("login failed", extra={"ip": client_ip})
        raise HTTPException(
            status_code=401,
            detail=error_response(
                "PUPU_0002",
                "invalid credentials",
                details={"retry_after_sec": int(until - time.time()) if until else 0},
            ),
        )
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=502, detail=error_response("PUPU_5020", "auth service unavailable")) from exc

    ATTEMPTS.pop((email, client_ip), None)
    _set_session_cookies(response, session, settings)
    audit.info("login", extra={"user": session.user.id})
    return {
        "user": {"id": session.user.id, "email": session.user.email},
        "access_token": session.access_token,
        "csrf_token": generate_csrf_token(settings.csrf_secret, session.user.id),
    }


@router.get("/callback")
async def callback(code: str | None = None, next_path: str | None = Query(default=None, alias="next")):
    """OAuth / magic-link landing: trade the code for a session then go home."""
    settings = get_settings()
    target = next_path if next_path and next_path.startswith("/") else settings.auth_redirect_url
    redirect = RedirectResponse(url=target, status_code=303)
    if not code:
        return redirect
    auth = _hosted_auth(settings)
    try:
        session = await auth.exchange_code_for_session(code)
    except AuthenticationRequired:
        raise HTTPException(status_code=401, detail=error_response("PUPU_0003", "invalid or expired auth code"))
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=502, detail=error_response("PUPU_5020", "auth service unavailable")) from exc
    _set_session_cookies(redirect, session, settings)
    audit.info("oauth login", extra={"user": session.user.id})
    return redirect


@router.post("/logout")
async def logout(request: Request, response: Response) -> dict:
    settings = get_settings()
    token = access_token_from(request)
    if token and settings.supabase_url and settings.supabase_anon_key:
        try:
            await HostedAuth(settings).sign_out(token)
        except httpx.HTTPError as exc:
            audit.warning("remote sign-out failed", extra={"error": exc.__class__.__name__})
    response.delete_cookie("access_token")
    response.delete_cookie("refresh_token")
    return {"status": "ok"}

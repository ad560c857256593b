from __future__ import annotations

from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, Request, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from jose import JWTError, jwt

from pupu.core.config import get_settings
from pupu.core.errors import error_response
from pupu.core.identity import AuthUser, HostedAuth
from pupu.core.logger import get_logger


audit_logger = get_logger("audit")

JWT_ALGORITHM = "HS256"
DEBUG_USER_ID = "debug"


def _auth_disabled() -> bool:
    return bool(get_settings().disable_auth)


# ----- JWT utils -----
def verify_jwt(token: str) -> dict[str, Any]:
    """Decode a hosted-auth access token locally. Empty dict when invalid."""
    settings = get_settings()
    if not settings.supabase_jwt_secret:
        return {}
    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[JWT_ALGORITHM],
            audience=settings.supabase_jwt_audience,
        )
    except JWTError:
        return {}


def access_token_from(request: Request) -> str | None:
    auth = request.headers.get("authorization")
    if auth and auth.lower().startswith("bearer "):
        token = auth.split(" ", 1)[1].strip()
        if token:
            return token
    return request.cookies.get("access_token") if request.cookies else None


async def resolve_user(token: str) -> AuthUser | None:
    """Resolve a token into a user: local JWT check first, auth service second."""
    settings = get_settings()
    if settings.supabase_jwt_secret:
        claims = verify_jwt(token)
        if not claims.get("sub"):
            return None
        return AuthUser(id=str(claims["sub"]), email=claims.get("email"), access_token=token, claims=claims)
    if settings.supabase_url and settings.supabase_anon_key:
        try:
            return await HostedAuth(settings).get_user(token)
        except httpx.HTTPError as exc:
            audit_logger.warning("auth service unreachable", extra={"error": exc.__class__.__name__})
            return None
    return None


# ----- FastAPI dependencies -----
async def current_user(request: Request) -> AuthUser | None:
    """Dependency returning the caller, or None when the request is anonymous."""
    if _auth_disabled():
        return AuthUser(id=DEBUG_USER_ID)
    token = access_token_from(request)
    if not token:
        return None
    user = await resolve_user(token)
    if user is None:
        audit_logger.info("rejected access token", extra={"path": request.url.path})
    return user


async def require_user(user: AuthUser | None = Depends(current_user)) -> AuthUser:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("PUPU_4010", "Authentication required"),
        )
    return user


# ----- CSRF utils + dependency -----
def generate_csrf_token(secret_key: str, user_id: str) -> str:
    serializer = URLSafeTimedSerializer(secret_key, salt="pupu-csrf")
    return serializer.dumps(user_id)


def validate_csrf_token(secret_key: str, token: str, max_age: int = 3600) -> str | None:
    serializer = URLSafeTimedSerializer(secret_key, salt="pupu-csrf")
    try:
        return serializer.loads(token, max_age=max_age)
    except (BadSignature, SignatureExpired):
        return None


async def csrf_protect(
    request: Request,
    user: AuthUser = Depends(require_user),
    csrf: str | None = Header(default=None, alias="X-CSRF-Token"),
) -> None:
    """Cookie sessions must echo their CSRF token; bearer calls are exempt."""
    if not request.cookies.get("access_token"):
        return
    settings = get_settings()
    if not csrf:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error_response("PUPU_4030", "invalid CSRF token"))
    owner = validate_csrf_token(settings.csrf_secret, csrf, max_age=settings.csrf_max_age_seconds)
    if owner is None or owner != user.id:
        audit_logger.warning("CSRF token mismatch", extra={"path": request.url.path})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error_response("PUPU_4030", "invalid CSRF token"))

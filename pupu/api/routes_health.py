from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from pupu.core.config import get_settings
from pupu.core.errors import KeyStoreError
from pupu.core.identity import AuthUser
from pupu.core.keystore import get_key_store
from pupu.core.security import require_user


router = APIRouter(tags=["health"])

VERSION = "0.3.0"


@router.get("/health")
async def health() -> dict:
    settings = get_settings()
    return {
        "status": "ok",
        "version": VERSION,
        "time": datetime.now(timezone.utc).isoformat(),
        "keystore": settings.keystore_backend,
        "providers": settings.provider_key_flags(),
    }


@router.get("/health/store")
async def health_store(user: AuthUser = Depends(require_user)):
    """Check that the key store answers for the authenticated caller."""
    settings = get_settings()
    try:
        await get_key_store(settings, access_token=user.access_token).ping()
    except KeyStoreError as exc:
        return JSONResponse(
            {"status": "error", "message": f"Key store query failed: {exc}", "code": exc.code},
            status_code=500,
        )
    return {
        "status": "success",
        "message": f"Key store connection successful for user: {user.email or user.id}",
        "backend": settings.keystore_backend,
    }

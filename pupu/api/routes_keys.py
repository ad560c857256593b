from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from pupu.core.config import get_settings
from pupu.core.errors import KeyStoreError, error_response
from pupu.core.identity import AuthUser
from pupu.core.keystore import UserApiKeys, get_key_store, save_error_message
from pupu.core.logger import get_logger
from pupu.core.security import csrf_protect, require_user
from pupu.core.trace import get_trace_id


router = APIRouter(prefix="/api/keys", tags=["keys"])
audit = get_logger("audit")


class KeysIn(BaseModel):
    openai: str | None = None
    gemini: str | None = None
    xai: str | None = None
    search: str | None = None


def _clean(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


def _out(record: UserApiKeys) -> dict:
    return {
        "keys": {
            "openai": record.openai_key or "",
            "gemini": record.gemini_key or "",
            "xai": record.xai_key or "",
            "search": record.search_key or "",
        },
        "configured": {name.removesuffix("_key"): info["configured"] for name, info in record.summary().items()},
        "updated_at": record.updated_at,
    }


@router.get("")
async def get_keys(user: AuthUser = Depends(require_user)) -> dict:
    """Return the caller's own stored keys so the client can prefill its form."""
    settings = get_settings()
    try:
        record = await get_key_store(settings, access_token=user.access_token).get(user.id)
    except KeyStoreError as exc:
        raise HTTPException(
            status_code=500,
            detail=error_response("PUPU_5001", "Failed to retrieve user API keys", details=exc.code, trace_id=get_trace_id()),
        ) from exc
    return _out(record or UserApiKeys(user_id=user.id))


@router.put("", dependencies=[Depends(csrf_protect)])
async def save_keys(data: KeysIn, user: AuthUser = Depends(require_user)) -> dict:
    settings = get_settings()
    record = UserApiKeys(
        user_id=user.id,
        openai_key=_clean(data.openai),
        gemini_key=_clean(data.gemini),
        xai_key=_clean(data.xai),
        search_key=_clean(data.search),
    )
    try:
        saved = await get_key_store(settings, access_token=user.access_token).upsert(record)
    except KeyStoreError as exc:
        audit.error("key save failed", extra={"user": user.id, "code": exc.code})
        raise HTTPException(
            status_code=500,
            detail=error_response("PUPU_5002", save_error_message(exc), details=exc.code, trace_id=get_trace_id()),
        ) from exc
    audit.info("keys saved", extra={"user": user.id, "keys": saved.summary()})
    return _out(saved)

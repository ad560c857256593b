from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pupu.core import providers, websearch
from pupu.core.config import get_settings
from pupu.core.errors import KeyStoreError
from pupu.core.identity import AuthUser
from pupu.core.keystore import keys_for_user
from pupu.core.logger import get_logger
from pupu.core.security import current_user


router = APIRouter(prefix="/api", tags=["chat"])
logger = get_logger("chat")

FALLBACK_REPLY = "I'm having trouble processing your request. Please check the API configuration and try again."


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: list[ChatMessageIn] = Field(default_factory=list)
    query: str
    aiProvider: str = "gemini"
    geminiModel: str | None = None


@router.post("/chat")
async def chat(payload: ChatRequest, user: AuthUser | None = Depends(current_user)):
    """One conversational turn: optional web search, then the selected provider."""
    if user is None:
        logger.info("chat rejected: anonymous caller")
        return JSONResponse({"error": "Authentication required"}, status_code=401)

    settings = get_settings()
    try:
        try:
            keys = await keys_for_user(user.id, settings, access_token=user.access_token)
        except KeyStoreError as exc:
            logger.error("key store read failed", extra={"code": exc.code, "error": str(exc)})
            return JSONResponse({"error": "Failed to retrieve user API keys"}, status_code=500)
        logger.info("chat keys resolved", extra={"user": user.id, "keys": keys.flags(), "provider": payload.aiProvider})

        search_used = websearch.needs_search(payload.query, settings.search_triggers)
        search_results = ""
        if search_used:
            try:
                search_results = await websearch.search_web(payload.query, keys.search, settings=settings)
            except Exception as exc:
                logger.warning("search failed", extra={"error": str(exc)})
                search_results = websearch.SEARCH_PLACEHOLDER

        history = [m.model_dump() for m in payload.messages]
        try:
            text = await providers.generate_ai_response(
                history,
                payload.query,
                search_results,
                payload.aiProvider,
                keys,
                payload.geminiModel,
                settings=settings,
            )
        except Exception as exc:
            raise RuntimeError(f"AI generation failed: {exc}") from exc

        return {
            "response": text,
            "searchUsed": search_used,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as exc:
        logger.error("chat request failed", extra={"error": str(exc)})
        return JSONResponse(
            {
                "error": "Failed to process request",
                "details": str(exc),
                "response": FALLBACK_REPLY,
            },
            status_code=500,
        )

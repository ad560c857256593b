from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from pupu.core import speech
from pupu.core.config import get_settings
from pupu.core.errors import SpeechSynthesisError
from pupu.core.logger import get_logger
from pupu.core.textclean import clean_text_for_speech


router = APIRouter(prefix="/api", tags=["speech"])
logger = get_logger("speech")


class SpeechRequest(BaseModel):
    text: str | None = None
    voice: str = "browser"


@router.post("/speech")
async def synthesize(payload: SpeechRequest):
    """Hosted audio when asked for and available, otherwise cleaned text for local synthesis."""
    if not payload.text:
        return JSONResponse({"error": "No text provided"}, status_code=400)

    cleaned = clean_text_for_speech(payload.text)
    settings = get_settings()
    logger.info("tts request", extra={"voice": payload.voice, "chars": len(cleaned)})

    if payload.voice == "elevenlabs" and settings.elevenlabs_api_key:
        try:
            audio = await speech.synthesize_elevenlabs(cleaned, settings=settings)
        except SpeechSynthesisError as exc:
            if exc.status_code is not None:
                return {
                    "error": "elevenlabs_failed",
                    "status": exc.status_code,
                    "details": exc.details,
                    "text": cleaned,
                    "fallback": True,
                    "message": "ElevenLabs failed, use local TTS",
                }
            return {
                "error": "elevenlabs_error",
                "details": str(exc),
                "text": cleaned,
                "fallback": True,
                "message": "ElevenLabs error, use local TTS",
            }
        return Response(
            content=audio,
            media_type="audio/mpeg",
            headers={"Content-Length": str(len(audio))},
        )

    return {
        "text": cleaned,
        "voice": "browser",
        "fallback": False,
        "message": "Using local TTS",
    }

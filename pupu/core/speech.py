from __future__ import annotations

import httpx

from pupu.core.config import Settings, get_settings
from pupu.core.errors import SpeechSynthesisError
from pupu.core.logger import get_logger


logger = get_logger("speech")


def elevenlabs_payload(text: str, settings: Settings) -> dict[str, object]:
    return {
        "text": text,
        "model_id": settings.elevenlabs_model_id,
        "voice_settings": {
            "stability": settings.elevenlabs_stability,
            "similarity_boost": settings.elevenlabs_similarity_boost,
            "style": settings.elevenlabs_style,
            "use_speaker_boost": settings.elevenlabs_speaker_boost,
        },
    }


async def synthesize_elevenlabs(
    text: str,
    *,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bytes:
    """Render ``text`` with the hosted voice and return the MPEG audio bytes."""
    settings = settings or get_settings()
    if not settings.elevenlabs_api_key:
        raise SpeechSynthesisError("ElevenLabs API key not configured")
    url = f"{settings.elevenlabs_base_url.rstrip('/')}/text-to-speech/{settings.elevenlabs_voice_id}"
    headers = {
        "Accept": "audio/mpeg",
        "Content-Type": "application/json",
        "xi-api-key": settings.elevenlabs_api_key,
    }
    async with httpx.AsyncClient(timeout=settings.speech_timeout_sec, transport=transport) as client:
        try:
            resp = await client.post(url, json=elevenlabs_payload(text, settings), headers=headers)
        except httpx.RequestError as exc:
            raise SpeechSynthesisError(f"ElevenLabs unreachable: {exc.__class__.__name__}") from exc
    if resp.is_error:
        logger.warning("elevenlabs rejected request", extra={"status": resp.status_code})
        raise SpeechSynthesisError(
            "ElevenLabs request failed",
            status_code=resp.status_code,
            details=resp.text[:500],
        )
    logger.info("elevenlabs audio generated", extra={"bytes": len(resp.content), "chars": len(text)})
    return resp.content

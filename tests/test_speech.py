import json

import httpx
import pytest
from fastapi.testclient import TestClient

from pupu.core import speech
from pupu.core.config import Settings, get_settings
from pupu.core.errors import SpeechSynthesisError
from pupu.main import app


def test_missing_text():
    with TestClient(app) as client:
        resp = client.post("/api/speech", json={"voice": "browser"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "No text provided"}


def test_local_voice_gets_cleaned_text():
    with TestClient(app) as client:
        resp = client.post("/api/speech", json={"text": "**Hi** [here](http://x)"})
    assert resp.status_code == 200
    assert resp.json() == {"text": "Hi here", "voice": "browser", "fallback": False, "message": "Using local TTS"}


def test_hosted_voice_without_key_falls_back_to_local():
    with TestClient(app) as client:
        resp = client.post("/api/speech", json={"text": "Hello", "voice": "elevenlabs"})
    assert resp.json()["voice"] == "browser"


def test_hosted_voice_returns_audio(monkeypatch):
    monkeypatch.setenv("ELEVENLABS_API_KEY", "el-key")
    get_settings.cache_clear()  # type: ignore[attr-defined]

    async def fake_synth(text, *, settings=None, transport=None):
        assert text == "Hello there"
        return b"ID3-audio"

    monkeypatch.setattr(speech, "synthesize_elevenlabs", fake_synth)
    with TestClient(app) as client:
        resp = client.post("/api/speech", json={"text": "Hello *there*", "voice": "elevenlabs"})
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "audio/mpeg"
    assert resp.content == b"ID3-audio"


def test_hosted_voice_rejection_is_reported_with_fallback(monkeypatch):
    monkeypatch.setenv("ELEVENLABS_API_KEY", "el-key")
    get_settings.cache_clear()  # type: ignore[attr-defined]

    async def rejected(text, *, settings=None, transport=None):
        raise SpeechSynthesisError("ElevenLabs request failed", status_code=401, details="invalid api key")

    monkeypatch.setattr(speech, "synthesize_elevenlabs", rejected)
    with TestClient(app) as client:
        resp = client.post("/api/speech", json={"text": "Hello", "voice": "elevenlabs"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["error"] == "elevenlabs_failed"
    assert data["status"] == 401
    assert data["details"] == "invalid api key"
    assert data["fallback"] is True
    assert data["text"] == "Hello"


def test_hosted_voice_unreachable(monkeypatch):
    monkeypatch.setenv("ELEVENLABS_API_KEY", "el-key")
    get_settings.cache_clear()  # type: ignore[attr-defined]

    async def unreachable(text, *, settings=None, transport=None):
        raise SpeechSynthesisError("ElevenLabs unreachable: ConnectError")

    monkeypatch.setattr(speech, "synthesize_elevenlabs", unreachable)
    with TestClient(app) as client:
        data = client.post("/api/speech", json={"text": "Hello", "voice": "elevenlabs"}).json()
    assert data["error"] == "elevenlabs_error"
    assert data["details"] == "ElevenLabs unreachable: ConnectError"
    assert data["fallback"] is True


@pytest.mark.asyncio
async def test_synthesize_wire_format():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["xi-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=b"mp3", headers={"content-type": "audio/mpeg"})

    settings = Settings(elevenlabs_api_key="el-key")
    audio = await speech.synthesize_elevenlabs("Hi", settings=settings, transport=httpx.MockTransport(handler))
    assert audio == b"mp3"
    assert seen["url"] == "https://api.elevenlabs.io/v1/text-to-speech/21m00Tcm4TlvDq8ikWAM"
    assert seen["key"] == "el-key"
    assert seen["body"]["model_id"] == "eleven_monolingual_v1"
    assert seen["body"]["voice_settings"]["similarity_boost"] == 0.5


@pytest.mark.asyncio
async def test_synthesize_error_carries_status():
    settings = Settings(elevenlabs_api_key="el-key")
    transport = httpx.MockTransport(lambda request: httpx.Response(429, text="quota"))
    with pytest.raises(SpeechSynthesisError) as exc_info:
        await speech.synthesize_elevenlabs("Hi", settings=settings, transport=transport)
    assert exc_info.value.status_code == 429
    assert exc_info.value.details == "quota"

"""Text-to-speech: local pyttsx3 engine, hosted voice through the server."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Protocol

import pyttsx3

from pupu.core.textclean import clean_text_for_speech

from ..config.settings import VoiceSettings
from ..services.api import PupuAPI

if TYPE_CHECKING:
    from .playback import SpeechPlayback


logger = logging.getLogger(__name__)

MALE_VOICE_HINTS: tuple[str, ...] = ("danny", "daniel", "male")
BASE_RATE_WPM = 200


@dataclass(slots=True)
class VoiceInfo:
    id: str
    name: str
    languages: list[str] = field(default_factory=list)

    def speaks(self, language: str) -> bool:
        prefix = language.split("-")[0].lower()
        return any(lang.lower().startswith(prefix) for lang in self.languages)


def _decode_languages(raw: Iterable[Any]) -> list[str]:
    out = []
    for item in raw or []:
        if isinstance(item, bytes):
            # espeak prefixes language codes with a priority byte
            item = item.decode("utf-8", errors="ignore").lstrip("\x00\x01\x02\x03\x04\x05\x06\x07\x08\t\n")
        out.append(str(item).replace("_", "-"))
    return out


def resolve_voice(voices: Iterable[VoiceInfo], selected_name: str = "", language: str = "en") -> VoiceInfo | None:
    """Pick a voice: explicit choice, then a male voice in the language, then any voice in it."""
    voices = list(voices)
    if selected_name:
        for voice in voices:
            if voice.name == selected_name:
                return voice
    in_language = [v for v in voices if v.speaks(language)]
    if not any(v.languages for v in voices):
        # SAPI5 voices carry no language list; match on names only
        in_language = voices
    for voice in in_language:
        name = voice.name.lower()
        if any(hint in name for hint in MALE_VOICE_HINTS):
            return voice
    if in_language:
        return in_language[0]
    return None


class LocalSpeechEngine:
    """Blocking pyttsx3 wrapper. Call ``speak`` from a worker thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._engine: Any | None = None

    def _ensure_engine(self) -> Any:
        if self._engine is None:
            self._engine = pyttsx3.init()
        return self._engine

    def list_voices(self) -> list[VoiceInfo]:
        with self._lock:
            engine = self._ensure_engine()
            return [
                VoiceInfo(id=str(v.id), name=str(v.name or v.id), languages=_decode_languages(getattr(v, "languages", [])))
                for v in engine.getProperty("voices")
            ]

    def speak(self, text: str, settings: VoiceSettings) -> VoiceInfo | None:
        if not text.strip():
            return None
        voice = resolve_voice(self.list_voices(), settings.selected_voice_name, settings.language)
        with self._lock:
            engine = self._ensure_engine()
            if voice is not None:
                engine.setProperty("voice", voice.id)
            engine.setProperty("rate", int(BASE_RATE_WPM * settings.rate))
            engine.setProperty("volume", max(0.0, min(1.0, settings.volume)))
            engine.say(text)
            engine.runAndWait()
        return voice

    def stop(self) -> None:
        if self._engine is not None:
            self._engine.stop()


class HostedSpeech:
    """Hosted voice rendered by the server, played locally."""

    def __init__(self, api: PupuAPI, *, player: SpeechPlayback | None = None) -> None:
        self._api = api
        self._player = player

    def _ensure_player(self) -> SpeechPlayback:
        if self._player is None:
            from .playback import SpeechPlayback

            self._player = SpeechPlayback()
        return self._player

    async def speak(self, text: str) -> None:
        reply = await self._api.speech(text, voice="elevenlabs")
        if not reply.has_audio:
            raise RuntimeError(f"hosted voice unavailable: {reply.error or 'no audio'}")
        await asyncio.to_thread(self._ensure_player().play, reply.audio or b"")

    def stop(self) -> None:
        if self._player is not None:
            self._player.stop()


class LocalBackend(Protocol):
    def speak(self, text: str, settings: VoiceSettings) -> Any: ...

    def stop(self) -> None: ...


class Speaker:
    """Speak replies with the configured strategy, degrading to the local engine."""

    def __init__(self, settings: VoiceSettings, *, local: LocalBackend | None = None, hosted: HostedSpeech | None = None) -> None:
        self.settings = settings
        self.local = local or LocalSpeechEngine()
        self.hosted = hosted

    async def speak(self, text: str) -> str:
        """Return the strategy that produced audio: ``elevenlabs`` or ``local``."""
        cleaned = clean_text_for_speech(text)
        if not cleaned:
            return "none"
        if self.settings.provider == "elevenlabs" and self.hosted is not None:
            try:
                await self.hosted.speak(cleaned)
                return "elevenlabs"
            except Exception as exc:
                logger.warning("hosted voice failed, using local engine: %s", exc)
        await asyncio.to_thread(self.local.speak, cleaned, self.settings)
        return "local"

    def cancel(self) -> None:
        try:
            if self.hosted is not None:
                self.hosted.stop()
        finally:
            self.local.stop()

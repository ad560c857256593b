"""Speech recognition sessions backed by the SpeechRecognition library.

Each session captures audio in a worker thread and reports what happened as
``RecognitionEvent`` values posted onto the asyncio loop. The controller is
the only consumer, so recognition never mutates client state directly.
"""

from __future__ import annotations

import asyncio
import errno
import itertools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

import speech_recognition as sr

from ..config.settings import RecognitionSettings
from ..state.machine import ABORTED, AUDIO_CAPTURE, NETWORK, NO_SPEECH, NOT_ALLOWED, SessionKind


logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    STARTED = "started"
    RESULT = "result"
    ERROR = "error"
    ENDED = "ended"


@dataclass(slots=True)
class RecognitionEvent:
    session: SessionKind
    kind: EventKind
    transcript: str = ""
    confidence: float | None = None
    error: str | None = None
    session_id: int = 0


EventSink = Callable[[RecognitionEvent], None]


class RecognitionError(RuntimeError):
    """A recognition failure, tagged with the shared error code."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code

    @property
    def transient(self) -> bool:
        return self.code != NOT_ALLOWED


class RecognitionSession(Protocol):
    kind: SessionKind
    session_id: int

    @property
    def running(self) -> bool: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


_session_ids = itertools.count(1)


def classify_error(exc: BaseException) -> str:
    """Map library and OS failures onto the shared error codes."""
    if isinstance(exc, RecognitionError):
        return exc.code
    if isinstance(exc, (sr.WaitTimeoutError, sr.UnknownValueError)):
        return NO_SPEECH
    if isinstance(exc, sr.RequestError):
        return NETWORK
    if isinstance(exc, PermissionError):
        return NOT_ALLOWED
    if isinstance(exc, OSError):
        if exc.errno in (errno.EACCES, errno.EPERM) or "permission" in str(exc).lower():
            return NOT_ALLOWED
        return AUDIO_CAPTURE
    return AUDIO_CAPTURE


def best_alternative(result: Any) -> tuple[str, float | None]:
    """Pick the top transcript from a ``recognize_google(show_all=True)`` payload."""
    if not isinstance(result, dict):
        raise RecognitionError(NO_SPEECH)
    alternatives = result.get("alternative") or []
    if not alternatives:
        raise RecognitionError(NO_SPEECH)
    top = alternatives[0]
    transcript = str(top.get("transcript", "")).strip()
    if not transcript:
        raise RecognitionError(NO_SPEECH)
    confidence = top.get("confidence")
    return transcript, float(confidence) if confidence is not None else None


class SpeechRecognitionSession:
    """One wake-word or command session: a single phrase, then the session ends.

    The microphone is released before the result is posted, so the next
    session can open it straight away.
    """

    def __init__(
        self,
        kind: SessionKind,
        sink: EventSink,
        settings: RecognitionSettings,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        recognizer: sr.Recognizer | None = None,
        microphone_factory: Callable[[], Any] | None = None,
    ) -> None:
        self.kind = kind
        self.session_id = next(_session_ids)
        self.settings = settings
        self._sink = sink
        self._loop = loop or asyncio.get_running_loop()
        self._recognizer = recognizer or sr.Recognizer()
        self._microphone_factory = microphone_factory or (
            lambda: sr.Microphone(device_index=settings.input_device)
        )
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            raise RuntimeError(f"{self.kind.value} recognition already started")
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"pupu-{self.kind.value}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Ask the worker to end. The phrase being captured, if any, still completes."""
        self._stop.set()

    def _post(self, kind: EventKind, **fields: Any) -> None:
        event = RecognitionEvent(session=self.kind, kind=kind, session_id=self.session_id, **fields)
        self._loop.call_soon_threadsafe(self._sink, event)

    def _recognize(self, source: Any) -> tuple[str, float | None]:
        audio = self._recognizer.listen(
            source,
            timeout=self.settings.listen_timeout,
            phrase_time_limit=self.settings.phrase_time_limit,
        )
        if self._stop.is_set():
            raise RecognitionError(ABORTED)
        result = self._recognizer.recognize_google(audio, language=self.settings.language, show_all=True)
        return best_alternative(result)

    def _run(self) -> None:
        self._post(EventKind.STARTED)
        try:
            with self._microphone_factory() as source:
                self._recognizer.adjust_for_ambient_noise(source, duration=0.3)
                transcript, confidence = self._recognize(source)
            self._post(EventKind.RESULT, transcript=transcript, confidence=confidence)
        except Exception as exc:
            code = classify_error(exc)
            if code != ABORTED:
                logger.info("%s recognition error: %s (%s)", self.kind.value, code, exc)
                self._post(EventKind.ERROR, error=code)
        finally:
            self._post(EventKind.ENDED)


SessionFactory = Callable[[SessionKind, EventSink], RecognitionSession]


def speech_recognition_factory(
    settings: RecognitionSettings,
    loop: asyncio.AbstractEventLoop | None = None,
) -> SessionFactory:
    def _factory(kind: SessionKind, sink: EventSink) -> RecognitionSession:
        return SpeechRecognitionSession(kind, sink, settings, loop=loop)

    return _factory

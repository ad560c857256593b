from __future__ import annotations

import asyncio
import itertools

import pytest

from desktop.pupu_client.audio.recognition import EventKind, RecognitionEvent
from desktop.pupu_client.config.settings import AppSettings, RecognitionSettings
from desktop.pupu_client.runtime.controller import PERMISSION_DENIED_MESSAGE, VoiceController
from desktop.pupu_client.runtime.dispatcher import CommandDispatcher
from desktop.pupu_client.services.schemas import ChatReply
from desktop.pupu_client.state.app_state import AppState, MicrophoneStatus
from desktop.pupu_client.state.machine import NO_SPEECH, NOT_ALLOWED, Mode, RecognitionState, SessionKind


_ids = itertools.count(1)


class FakeSession:
    def __init__(self, kind: SessionKind, sink) -> None:
        self.kind = kind
        self.session_id = next(_ids)
        self.sink = sink
        self.started = False
        self.stopped = False

    @property
    def running(self) -> bool:
        return self.started and not self.stopped

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True


class SessionRecorder:
    def __init__(self) -> None:
        self.sessions: list[FakeSession] = []

    def __call__(self, kind: SessionKind, sink) -> FakeSession:
        session = FakeSession(kind, sink)
        self.sessions.append(session)
        return session

    @property
    def live(self) -> list[FakeSession]:
        return [s for s in self.sessions if s.running]


class FakeSpeaker:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.spoken: list[str] = []
        self.cancelled = False

    async def speak(self, text: str) -> str:
        if self.fail:
            raise RuntimeError("audio device gone")
        self.spoken.append(text)
        return "local"

    def cancel(self) -> None:
        self.cancelled = True


class FakeApi:
    def __init__(self, reply: str = "Hello there") -> None:
        self.reply = reply
        self.queries: list[str] = []

    async def chat(self, history, query, *, provider, gemini_model=None):
        self.queries.append(query)
        return ChatReply(response=self.reply)


def _build(microphone: MicrophoneStatus | None = None, speaker: FakeSpeaker | None = None, **recognition):
    delays = dict(
        activation_delay=0,
        wake_handoff_delay=0,
        after_result_delay=0,
        after_end_delay=0,
        wake_no_speech_delay=0,
        command_no_speech_delay=0,
        wake_error_delay=0,
        command_error_delay=0,
    )
    delays.update(recognition)
    state = AppState(settings=AppSettings(recognition=RecognitionSettings(**delays)))
    api = FakeApi()
    recorder = SessionRecorder()
    speaker = speaker or FakeSpeaker()
    mic = microphone or MicrophoneStatus(True, True)
    controller = VoiceController(
        state,
        CommandDispatcher(api, state),
        speaker,
        session_factory=recorder,
        microphone_probe=lambda device: mic,
    )
    return controller, recorder, speaker, api


async def _settle() -> None:
    await asyncio.sleep(0.02)


def _event(session: FakeSession, kind: EventKind, **fields) -> RecognitionEvent:
    return RecognitionEvent(session=session.kind, kind=kind, session_id=session.session_id, **fields)


@pytest.mark.asyncio
async def test_activation_with_microphone_starts_command_listening():
    controller, recorder, _, _ = _build()
    statuses: list[str] = []
    controller.set_status_callback(statuses.append)
    mic = await controller.activate()
    await _settle()
    assert mic.available
    assert controller.machine.mode is Mode.VOICE
    assert [s.kind for s in recorder.sessions] == [SessionKind.COMMAND]
    assert controller.machine.state is RecognitionState.COMMAND_LISTENING
    assert statuses[-1] == "listening"
    await controller.shutdown()


@pytest.mark.asyncio
async def test_activation_without_microphone_falls_back_to_text_mode():
    controller, recorder, speaker, api = _build(MicrophoneStatus(False, False, "No microphone device found."))
    await controller.activate()
    await _settle()
    assert controller.machine.mode is Mode.TEXT
    assert controller.status == "text-only"
    assert recorder.sessions == []

    message = await controller.submit_text("what's new")
    assert message is not None and message.content == "Hello there"
    assert api.queries == ["what's new"]
    assert speaker.spoken == []
    assert [m.role for m in controller.state.history] == ["user", "assistant"]
    await controller.shutdown()


@pytest.mark.asyncio
async def test_accepted_command_is_answered_spoken_and_listening_resumes():
    controller, recorder, speaker, api = _build()
    messages = []
    controller.set_message_callback(messages.append)
    await controller.activate()
    await _settle()
    first = recorder.sessions[0]

    await controller.handle_event(_event(recorder.sessions[-1], EventKind.RESULT, transcript="what time is it", confidence=0.92))
    assert first.stopped
    assert api.queries == ["what time is it"]
    assert speaker.spoken == ["Hello there"]
    assert [m.content for m in messages] == ["Hello there"]

    await _settle()
    assert len(recorder.sessions) == 2
    assert recorder.sessions[1].kind is SessionKind.COMMAND
    assert controller.machine.state is RecognitionState.COMMAND_LISTENING
    await controller.shutdown()


@pytest.mark.asyncio
async def test_low_confidence_result_is_discarded():
    controller, recorder, speaker, api = _build()
    await controller.activate()
    await _settle()
    await controller.handle_event(
        _event(recorder.sessions[-1], EventKind.RESULT, transcript="tell me a long story about dragons", confidence=0.1)
    )
    await _settle()
    assert api.queries == []
    assert speaker.spoken == []
    assert len(recorder.sessions) == 2
    await controller.shutdown()


@pytest.mark.asyncio
async def test_wake_word_hands_off_to_command_session():
    controller, recorder, _, api = _build(wake_word_mode=True)
    await controller.activate()
    await _settle()
    wake = recorder.sessions[0]
    assert wake.kind is SessionKind.WAKE_WORD

    await controller.handle_event(_event(recorder.sessions[-1], EventKind.RESULT, transcript="random words"))
    assert not wake.stopped
    assert controller.machine.wake_word_running

    await controller.handle_event(_event(recorder.sessions[-1], EventKind.RESULT, transcript="hey pupu"))
    assert wake.stopped
    await _settle()
    assert recorder.sessions[-1].kind is SessionKind.COMMAND
    assert controller.machine.command_running
    assert len(recorder.live) == 1
    assert api.queries == []
    await controller.shutdown()


@pytest.mark.asyncio
async def test_events_from_stale_session_are_ignored():
    controller, recorder, _, _ = _build(wake_word_mode=True)
    await controller.activate()
    await _settle()
    await controller.handle_event(_event(recorder.sessions[-1], EventKind.RESULT, transcript="hi pupu"))
    await _settle()
    assert controller.machine.command_running

    await controller.handle_event(_event(recorder.sessions[0], EventKind.ENDED))
    await controller.handle_event(_event(recorder.sessions[0], EventKind.ERROR, error=NOT_ALLOWED))
    assert controller.machine.state is RecognitionState.COMMAND_LISTENING
    await controller.shutdown()


@pytest.mark.asyncio
async def test_late_end_from_replaced_command_session_is_ignored():
    controller, recorder, _, _ = _build(activation_delay=10)
    await controller.activate()
    controller.start_listening()
    controller.stop_listening()
    controller.start_listening()
    old, current = recorder.sessions

    await controller.handle_event(_event(old, EventKind.ENDED))
    await _settle()
    assert len(recorder.sessions) == 2
    assert not current.stopped
    assert recorder.live == [current]
    assert controller.machine.command_running
    await controller.shutdown()


@pytest.mark.asyncio
async def test_late_result_from_cancelled_command_is_not_sent():
    controller, recorder, speaker, api = _build(activation_delay=10)
    await controller.activate()
    controller.start_listening()
    controller.stop_listening()
    controller.start_listening()
    old, current = recorder.sessions

    controller.post_event(_event(old, EventKind.RESULT, transcript="old phrase", confidence=0.9))
    await _settle()
    assert api.queries == []
    assert speaker.spoken == []
    assert recorder.live == [current]

    controller.post_event(_event(current, EventKind.RESULT, transcript="new phrase", confidence=0.9))
    await _settle()
    assert api.queries == ["new phrase"]
    await controller.shutdown()


@pytest.mark.asyncio
async def test_permission_denied_stops_retrying():
    controller, recorder, _, _ = _build()
    await controller.activate()
    await _settle()
    await controller.handle_event(_event(recorder.sessions[-1], EventKind.ERROR, error=NOT_ALLOWED))
    await _settle()
    assert controller.machine.state is RecognitionState.ERROR
    assert controller.machine.last_error == PERMISSION_DENIED_MESSAGE
    assert controller.status == "error"
    assert len(recorder.sessions) == 1

    assert controller.start_listening() is True
    assert controller.machine.command_running
    await controller.shutdown()


@pytest.mark.asyncio
async def test_no_speech_restarts_listening():
    controller, recorder, _, _ = _build()
    await controller.activate()
    await _settle()
    await controller.handle_event(_event(recorder.sessions[-1], EventKind.ERROR, error=NO_SPEECH))
    assert controller.machine.state is RecognitionState.ERROR
    await _settle()
    assert len(recorder.sessions) == 2
    assert controller.machine.command_running
    await controller.shutdown()


@pytest.mark.asyncio
async def test_session_end_restarts_listening():
    controller, recorder, _, _ = _build()
    await controller.activate()
    await _settle()
    await controller.handle_event(_event(recorder.sessions[-1], EventKind.ENDED))
    assert controller.machine.state is RecognitionState.IDLE
    await _settle()
    assert len(recorder.sessions) == 2
    await controller.shutdown()


@pytest.mark.asyncio
async def test_speech_failure_still_resumes_listening():
    controller, recorder, _, api = _build(speaker=FakeSpeaker(fail=True))
    await controller.activate()
    await _settle()
    await controller.handle_event(_event(recorder.sessions[-1], EventKind.RESULT, transcript="hello", confidence=0.9))
    assert api.queries == ["hello"]
    await _settle()
    assert controller.machine.command_running
    assert len(recorder.sessions) == 2
    await controller.shutdown()


@pytest.mark.asyncio
async def test_text_mode_cancels_pending_restart():
    controller, recorder, _, _ = _build(activation_delay=0.05)
    await controller.activate()
    controller.switch_to_text_mode()
    await asyncio.sleep(0.1)
    assert recorder.sessions == []
    assert controller.status == "text-only"

    assert await controller.switch_to_voice_mode() is True
    assert controller.machine.command_running
    await controller.shutdown()


@pytest.mark.asyncio
async def test_toggle_listening_and_queue_consumer():
    controller, recorder, _, api = _build(activation_delay=10)
    await controller.activate()
    assert controller.toggle_listening() is True
    assert controller.machine.command_running
    assert controller.toggle_listening() is False
    assert controller.machine.state is RecognitionState.IDLE
    assert recorder.sessions[0].stopped

    controller.start_listening()
    controller.post_event(_event(recorder.sessions[-1], EventKind.RESULT, transcript="hello", confidence=0.9))
    await _settle()
    assert api.queries == ["hello"]
    await controller.shutdown()
    assert controller.status == "offline"

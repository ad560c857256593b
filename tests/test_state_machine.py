import pytest

from desktop.pupu_client.config.settings import RecognitionSettings
from desktop.pupu_client.state.machine import (
    ALLOWED_TRANSITIONS,
    AUDIO_CAPTURE,
    NETWORK,
    NO_SPEECH,
    NOT_ALLOWED,
    InvalidTransition,
    Mode,
    RecognitionMachine,
    RecognitionState,
    SessionKind,
    accept_command,
    is_wake_word,
    retry_delay,
)


@pytest.mark.parametrize(
    "transcript",
    ["hey pupu, what's up", "Hey PUPU", "ok papa", "hello", "hi there", "hey can you help"],
)
def test_wake_words_detected(transcript):
    assert is_wake_word(transcript) is True


@pytest.mark.parametrize("transcript", ["goodbye", "", "   ", "history of rome", "this is high"])
def test_non_wake_words(transcript):
    assert is_wake_word(transcript) is False


def test_custom_wake_words():
    assert is_wake_word("ok computer", wake_words=("computer",), greetings=()) is True
    assert is_wake_word("hey pupu", wake_words=("computer",), greetings=()) is False


def test_accept_command_rules():
    assert accept_command("what's the weather", 0.9) is True
    assert accept_command("open it", 0.1) is True  # short command
    assert accept_command("tell me a long story about dragons", 0.1) is False
    assert accept_command("anything at all goes here", None) is True
    assert accept_command("tell me a long story about dragons", 0.0) is True
    assert accept_command("  ", 0.99) is False


def test_accept_command_threshold_is_configurable():
    long_text = "tell me a long story about dragons"
    assert accept_command(long_text, 0.5, min_confidence=0.6) is False
    assert accept_command(long_text, 0.5, min_confidence=0.4) is True
    assert accept_command(long_text, 0.1, short_command_chars=100) is True


def test_retry_delays():
    settings = RecognitionSettings()
    assert retry_delay(SessionKind.WAKE_WORD, NO_SPEECH, settings) == 0.5
    assert retry_delay(SessionKind.COMMAND, NO_SPEECH, settings) == 1.0
    assert retry_delay(SessionKind.WAKE_WORD, AUDIO_CAPTURE, settings) == 3.0
    assert retry_delay(SessionKind.COMMAND, NETWORK, settings) == 2.0
    assert retry_delay(SessionKind.COMMAND, NOT_ALLOWED, settings) is None
    assert retry_delay(SessionKind.WAKE_WORD, NOT_ALLOWED, settings) is None


def test_legal_transitions_follow_table():
    machine = RecognitionMachine()
    machine.transition(RecognitionState.WAKE_WORD_LISTENING)
    machine.transition(RecognitionState.COMMAND_LISTENING)
    machine.transition(RecognitionState.SPEAKING)
    machine.transition(RecognitionState.IDLE)
    assert [r.target for r in machine.history] == [
        RecognitionState.WAKE_WORD_LISTENING,
        RecognitionState.COMMAND_LISTENING,
        RecognitionState.SPEAKING,
        RecognitionState.IDLE,
    ]


def test_illegal_transition_raises():
    machine = RecognitionMachine(state=RecognitionState.WAKE_WORD_LISTENING)
    with pytest.raises(InvalidTransition):
        machine.transition(RecognitionState.SPEAKING)
    assert machine.state is RecognitionState.WAKE_WORD_LISTENING


def test_same_state_is_noop():
    machine = RecognitionMachine()
    machine.transition(RecognitionState.IDLE)
    assert machine.history == []


def test_only_one_session_marked_running():
    machine = RecognitionMachine()
    for state in RecognitionState:
        for target in ALLOWED_TRANSITIONS[state]:
            machine.state = state
            machine.transition(target)
            assert not (machine.command_running and machine.wake_word_running)


def test_fail_records_error_until_next_transition():
    machine = RecognitionMachine(state=RecognitionState.COMMAND_LISTENING)
    machine.fail(NETWORK)
    assert machine.state is RecognitionState.ERROR
    assert machine.last_error == NETWORK
    machine.transition(RecognitionState.COMMAND_LISTENING)
    assert machine.last_error is None


def test_display_status():
    machine = RecognitionMachine()
    assert machine.status == "offline"
    machine.active = True
    assert machine.status == "text-only"
    machine.mode = Mode.VOICE
    assert machine.status == "online"
    machine.transition(RecognitionState.COMMAND_LISTENING)
    assert machine.status == "listening"
    machine.transition(RecognitionState.SPEAKING)
    assert machine.status == "speaking"
    machine.fail(AUDIO_CAPTURE)
    assert machine.status == "error"

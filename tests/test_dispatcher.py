import httpx
import pytest

from desktop.pupu_client.runtime.dispatcher import ERROR_PREFIX, CommandDispatcher
from desktop.pupu_client.services.api import ApiError
from desktop.pupu_client.services.schemas import ChatMessage, ChatReply
from desktop.pupu_client.state.app_state import AppState


class RecordingApi:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[dict] = []

    async def chat(self, history, query, *, provider, gemini_model=None):
        self.calls.append({"history": list(history), "query": query, "provider": provider, "model": gemini_model})
        if self.error is not None:
            raise self.error
        return ChatReply(response="It is sunny.", search_used=True)


@pytest.mark.asyncio
async def test_process_appends_both_turns_and_sends_history():
    state = AppState()
    state.history.append(ChatMessage(role="user", content="hi"))
    state.history.append(ChatMessage(role="assistant", content="hello"))
    api = RecordingApi()
    reply = await CommandDispatcher(api, state).process("  weather today?  ")

    assert reply.content == "It is sunny."
    assert reply.metadata == {"search_used": True}
    call = api.calls[0]
    assert call["query"] == "weather today?"
    assert call["provider"] == "gemini"
    assert call["model"] == "gemini-pro"
    assert [m.content for m in call["history"]] == ["hi", "hello", "weather today?"]
    assert [m.role for m in state.history] == ["user", "assistant", "user", "assistant"]
    assert state.processing is False


@pytest.mark.asyncio
async def test_non_gemini_provider_sends_no_model():
    state = AppState()
    state.settings.assistant.provider = "openai"
    api = RecordingApi()
    await CommandDispatcher(api, state).process("hello")
    assert api.calls[0]["provider"] == "openai"
    assert api.calls[0]["model"] is None


@pytest.mark.asyncio
async def test_server_error_becomes_assistant_message():
    state = AppState()
    api = RecordingApi(ApiError("AI generation failed: quota exceeded", status_code=500))
    reply = await CommandDispatcher(api, state).process("hello")
    assert reply.content == f"{ERROR_PREFIX}AI generation failed: quota exceeded"
    assert reply.is_error
    assert state.history[-1] is reply
    assert state.processing is False


@pytest.mark.asyncio
async def test_network_error_becomes_assistant_message():
    state = AppState()
    api = RecordingApi(httpx.ConnectError("connection refused"))
    reply = await CommandDispatcher(api, state).process("hello")
    assert reply.content == f"{ERROR_PREFIX}Network error: connection refused"
    assert reply.is_error

"""Personas and prompt assembly for the three providers."""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping


GEMINI_PERSONA = (
    "You are {name}, a helpful AI assistant with a friendly, conversational personality.\n"
    "\n"
    "Key traits:\n"
    "- Respond in 1-3 sentences maximum for most queries\n"
    "- Be conversational and warm like JARVIS\n"
    "- Use current information when provided\n"
    "- Stay focused and helpful\n"
    "- Address the user directly"
)

OPENAI_PERSONA = (
    "You are {name}, a helpful AI assistant. Respond in 1-3 sentences maximum. "
    "Be friendly and concise."
)

GROK_PERSONA = (
    "You are {name}, a helpful AI assistant with a witty and slightly sarcastic personality, "
    "like JARVIS. Respond concisely, in 1-3 sentences."
)


def _tail(messages: Iterable[Mapping[str, Any]], limit: int) -> List[Mapping[str, Any]]:
    items = [m for m in messages if isinstance(m, Mapping)]
    return items[-limit:] if limit > 0 else []


def render_history(messages: Iterable[Mapping[str, Any]], limit: int, *, name: str = "PUPU") -> str:
    lines = []
    for message in _tail(messages, limit):
        speaker = "Human" if message.get("role") == "user" else name
        lines.append(f"{speaker}: {message.get('content', '')}")
    return "\n".join(lines)


def build_gemini_prompt(
    messages: Iterable[Mapping[str, Any]],
    query: str,
    search_results: str = "",
    *,
    name: str = "PUPU",
    history_limit: int = 6,
) -> str:
    """Single-turn prompt: persona, recent history, web snippets, then the query."""
    sections = [GEMINI_PERSONA.format(name=name)]
    history = render_history(messages, history_limit, name=name)
    if history:
        sections.append(f"Current conversation context:\n{history}")
    if search_results:
        sections.append(f"Current web information: {search_results}")
    sections.append(f"Respond to: {query}")
    return "\n\n".join(sections)


def build_system_message(persona: str, search_results: str = "", *, name: str = "PUPU") -> str:
    content = persona.format(name=name)
    if search_results:
        content += f"\n\nUse this current information: {search_results}"
    return content


def build_chat_messages(
    system_prompt: str,
    history: Iterable[Mapping[str, Any]],
    query: str,
    *,
    history_limit: int = 4,
) -> List[dict[str, str]]:
    """OpenAI-style message list: system, the last few turns, then the query."""
    out: List[dict[str, str]] = [{"role": "system", "content": system_prompt}]
    for message in _tail(history, history_limit):
        role = "assistant" if message.get("role") == "assistant" else "user"
        content = str(message.get("content", ""))
        if content:
            out.append({"role": role, "content": content})
    out.append({"role": "user", "content": query})
    return out

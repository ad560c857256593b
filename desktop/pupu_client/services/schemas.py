"""Data schemas exchanged with the PUPU server."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal


Role = Literal["user", "assistant"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ChatMessage:
    """One conversation turn."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=_now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    @property
    def is_error(self) -> bool:
        return bool(self.metadata.get("error"))


@dataclass(slots=True)
class ChatReply:
    response: str
    search_used: bool = False
    timestamp: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ChatReply":
        return cls(
            response=str(payload.get("response") or ""),
            search_used=bool(payload.get("searchUsed", False)),
            timestamp=payload.get("timestamp"),
        )


@dataclass(slots=True)
class SpeechReply:
    """Answer of the speech endpoint: either audio bytes or a JSON envelope."""

    audio: bytes | None = None
    content_type: str | None = None
    text: str = ""
    fallback: bool = False
    error: str | None = None
    details: Any = None

    @property
    def has_audio(self) -> bool:
        return bool(self.audio)

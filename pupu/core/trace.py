from __future__ import annotations

import uuid
from contextvars import ContextVar


TRACE_HEADER = "X-Trace-Id"

_trace_id: ContextVar[str | None] = ContextVar("trace_id", default=None)


def new_trace_id() -> str:
    tid = uuid.uuid4().hex
    _trace_id.set(tid)
    return tid


def set_trace_id(tid: str | None) -> None:
    _trace_id.set(tid)


def get_trace_id() -> str | None:
    return _trace_id.get()


def bind_trace_id(incoming: str | None) -> str:
    """Reuse the caller's trace id when it sent one, otherwise mint a new one."""
    if incoming and incoming.strip():
        tid = incoming.strip()[:64]
        _trace_id.set(tid)
        return tid
    return new_trace_id()

"""Strip markdown and web noise from a reply before it is spoken."""

from __future__ import annotations

import re


_BOLD_RE = re.compile(r"\*\*(.*?)\*\*", re.DOTALL)
_ITALIC_RE = re.compile(r"\*(.*?)\*", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`(.*?)`")
_HEADER_RE = re.compile(r"#{1,6}\s")
_LINK_RE = re.compile(r"\[(.*?)\]\((.*?)\)")
_URL_RE = re.compile(r"https?://\S+")
_WWW_RE = re.compile(r"www\.\S+")
_SPECIAL_CHARS_RE = re.compile(r"[_~`]")
_ENTITY_RE = re.compile(r"&[a-zA-Z0-9#]+;")
_WHITESPACE_RE = re.compile(r"\s+")


def clean_text_for_speech(text: str) -> str:
    if not text:
        return ""
    cleaned = _BOLD_RE.sub(r"\1", text)
    cleaned = _ITALIC_RE.sub(r"\1", cleaned)
    cleaned = _INLINE_CODE_RE.sub(r"\1", cleaned)
    cleaned = _HEADER_RE.sub("", cleaned)
    # links first, or the URL pass would eat the target and leave "label()"
    cleaned = _LINK_RE.sub(r"\1", cleaned)
    cleaned = _URL_RE.sub("", cleaned)
    cleaned = _WWW_RE.sub("", cleaned)
    cleaned = _SPECIAL_CHARS_RE.sub("", cleaned)
    cleaned = cleaned.replace("|", ",")
    cleaned = _ENTITY_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned)
    return cleaned.strip()

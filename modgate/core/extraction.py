"""Moderation text extraction and chunking."""

from __future__ import annotations

from typing import Sequence

from modgate.core.models import ChatMessage


MAX_CHUNK_CHARS = 48000
_FULL_CONTEXT_ROLES = frozenset({"user", "system"})


def extract_full_context(messages: Sequence[ChatMessage]) -> str:
    """All user/system contents in order, joined by a single space."""
    return " ".join(msg.content for msg in messages if msg.role in _FULL_CONTEXT_ROLES)


def extract_last_user(messages: Sequence[ChatMessage]) -> str:
    for msg in reversed(messages):
        if msg.role == "user":
            return msg.content
    return ""


def extract_content(messages: Sequence[ChatMessage], full_context: bool) -> str:
    if full_context:
        return extract_full_context(messages)
    return extract_last_user(messages)


def split_text(text: str, max_chars: int = MAX_CHUNK_CHARS) -> list[str]:
    """Split text into consecutive pieces of at most max_chars characters."""
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    if len(text) <= max_chars:
        return [text]
    return [text[start:start + max_chars] for start in range(0, len(text), max_chars)]

"""Chat request, moderation and rejection models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _flatten_content(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        texts: list[str] = []
        for part in value:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                texts.append(part["text"])
        return " ".join(texts)
    raise ValueError("content must be a string or a list of content parts")


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    role: str = ""
    content: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def _role_or_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("content", mode="before")
    @classmethod
    def _content_as_text(cls, value: Any) -> str:
        return _flatten_content(value)


class ChatRequest(BaseModel):
    """Typed view of a chat completion body; unknown fields stay in the raw bytes."""

    model_config = ConfigDict(extra="ignore")

    model: str = ""
    messages: list[ChatMessage] = Field(default_factory=list)
    stream: bool = False

    @field_validator("model", mode="before")
    @classmethod
    def _model_or_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("stream", mode="before")
    @classmethod
    def _stream_or_false(cls, value: Any) -> Any:
        return False if value is None else value


class ModerationResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    flagged: bool = False


class ModerationResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: list[ModerationResult] = Field(default_factory=list)


class RejectionChoice(BaseModel):
    index: int = 0
    delta: dict[str, str] = Field(default_factory=dict)
    logprobs: Any = None
    finish_reason: str = "stop"


class RejectionResponse(BaseModel):
    id: str
    object: str = "chat.completion.chunk"
    created: int
    model: str
    system_fingerprint: str
    choices: list[RejectionChoice] = Field(default_factory=list)

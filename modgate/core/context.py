"""Pipeline runtime context."""

from __future__ import annotations

from dataclasses import dataclass, field
from time import time


@dataclass(slots=True)
class RequestContext:
    request_id: str
    model: str = ""
    stream: bool = False
    full_context_chars: int = 0
    moderated_chars: int = 0
    rewritten_model: str | None = None
    chunks_total: int = 0
    chunks_checked: int = 0
    started_at: float = field(default_factory=time)
    decision_reasons: list[str] = field(default_factory=list)

    def add_reason(self, reason: str) -> None:
        self.decision_reasons.append(reason)

    def elapsed_ms(self) -> int:
        return int((time() - self.started_at) * 1000)

"""
拒绝响应构建：仿照下游 chat.completion.chunk 结构，流式时按 SSE 分帧。
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, AsyncIterable, Iterable

from fastapi.responses import JSONResponse, StreamingResponse

from modgate.config.settings import Settings
from modgate.core.models import RejectionChoice, RejectionResponse
from modgate.core.pipeline import RejectDecision


def _random_segment(length: int) -> str:
    return str(uuid.uuid4())[:length]


def build_rejection_payload(warning_message: str, model: str, default_model: str = "gpt-4o-mini") -> dict[str, Any]:
    response = RejectionResponse(
        id=f"chatcmpl-{_random_segment(24)}",
        object="chat.completion.chunk",
        created=int(time.time()),
        model=model or default_model,
        system_fingerprint=f"fp_{_random_segment(12)}",
        choices=[
            RejectionChoice(
                index=0,
                delta={"content": warning_message},
                logprobs=None,
                finish_reason="stop",
            )
        ],
    )
    return response.model_dump()


def _sse_data_chunk(data: str) -> bytes:
    return f"data: {data}\n\n".encode("utf-8")


def _stream_done_sse_chunk() -> bytes:
    return b"data: [DONE]\n\n"


def rejection_sse_chunks(payload: dict[str, Any]) -> list[bytes]:
    """Single payload frame followed by the terminal [DONE] frame."""
    return [
        _sse_data_chunk(json.dumps(payload, ensure_ascii=False)),
        _stream_done_sse_chunk(),
    ]


def _build_streaming_response(generator: Iterable[bytes] | AsyncIterable[bytes]) -> StreamingResponse:
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


def build_rejection_response(decision: RejectDecision, settings: Settings) -> JSONResponse | StreamingResponse:
    payload = build_rejection_payload(settings.warning_msg, decision.model, settings.default_model)
    if decision.stream:
        return _build_streaming_response(iter(rejection_sse_chunks(payload)))
    return JSONResponse(status_code=200, content=payload)

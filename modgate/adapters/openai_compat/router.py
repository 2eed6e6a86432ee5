"""OpenAI-compatible routes."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from starlette.requests import ClientDisconnect

from modgate.adapters.openai_compat.stream_utils import build_rejection_response
from modgate.adapters.openai_compat.upstream import forward_request
from modgate.config.settings import settings
from modgate.core.context import RequestContext
from modgate.core.errors import (
    ForwardingFailure,
    MalformedRequest,
    ModerationError,
    RequestBodyUnreadable,
)
from modgate.core.flag_log import FlagLog
from modgate.core.moderation import ModerationClient
from modgate.core.pipeline import ForwardDecision, ModerationPipeline, parse_chat_request
from modgate.util.logger import logger


router = APIRouter()
flag_log = FlagLog(settings.flag_log_path)
moderation_client = ModerationClient(settings)
pipeline = ModerationPipeline(settings, moderation_client, flag_log)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "message": message,
                "type": "modgate_error",
                "code": code,
            }
        },
    )


async def close_moderation_async_client() -> None:
    await moderation_client.aclose()


async def _read_body(request: Request) -> bytes:
    try:
        return await request.body()
    except ClientDisconnect as exc:
        raise RequestBodyUnreadable("client disconnected while sending body") from exc


@router.post("/chat/completions")
async def chat_completions(request: Request) -> Response:
    ctx = RequestContext(request_id=f"req-{uuid.uuid4().hex[:12]}")
    logger.info("chat completion request received request_id=%s", ctx.request_id)

    try:
        body = await _read_body(request)
    except RequestBodyUnreadable as exc:
        logger.error("read request body failed request_id=%s error=%s", ctx.request_id, exc)
        return _error_response(400, "request_body_unreadable", "Error reading request body")

    # 解析失败属于客户端错误；之后的 MalformedRequest 只可能来自 model 替换
    try:
        chat_req = parse_chat_request(body)
    except MalformedRequest as exc:
        logger.warning("invalid chat request request_id=%s error=%s", ctx.request_id, exc)
        return _error_response(400, "invalid_request", "Invalid chat completion request")

    try:
        decision = await pipeline.decide(body, ctx, chat_req=chat_req)
    except MalformedRequest as exc:
        logger.error("replace model value failed request_id=%s error=%s", ctx.request_id, exc)
        return _error_response(500, "model_rewrite_failed", "Error replacing model value")
    except ModerationError as exc:
        logger.error("moderation failed request_id=%s error=%s", ctx.request_id, exc)
        return _error_response(500, "moderation_error", "Moderation error")

    if isinstance(decision, ForwardDecision):
        try:
            return await forward_request(decision.body, request.headers, url=pipeline.settings.target_url)
        except ForwardingFailure as exc:
            logger.error("forward request failed request_id=%s error=%s", ctx.request_id, exc)
            return _error_response(500, "forwarding_failed", "Error forwarding request")

    logger.info(
        "request rejected by moderation request_id=%s model=%s stream=%s chunk=%d",
        ctx.request_id,
        decision.model,
        decision.stream,
        decision.chunk_index,
    )
    return build_rejection_response(decision, pipeline.settings)

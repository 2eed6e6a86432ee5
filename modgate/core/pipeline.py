"""Moderation-and-forwarding decision pipeline."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Protocol, Union

from pydantic import ValidationError

from modgate.config.settings import Settings
from modgate.core.context import RequestContext
from modgate.core.errors import MalformedRequest
from modgate.core.extraction import extract_full_context, extract_last_user, split_text
from modgate.core.flag_log import FlagLog
from modgate.core.models import ChatRequest
from modgate.core.moderation import ModerationVerdict
from modgate.core.rewrite import replace_model_value, select_rewrite_model
from modgate.observability.logging import log_event
from modgate.util.logger import logger


REASON_WHITELISTED = "whitelisted_model"
REASON_BELOW_THRESHOLD = "below_min_chars"
REASON_PASSED = "moderation_passed"
REASON_FLAGGED = "moderation_flagged"
REASON_SIZE_REWRITE = "size_rewrite"


class Moderator(Protocol):
    async def moderate(self, text: str) -> ModerationVerdict: ...


@dataclass(slots=True)
class ForwardDecision:
    body: bytes
    reason: str
    rewritten_model: str | None = None


@dataclass(slots=True)
class RejectDecision:
    flagged_text: str
    model: str
    stream: bool
    chunk_index: int


Decision = Union[ForwardDecision, RejectDecision]


def parse_chat_request(body: bytes) -> ChatRequest:
    try:
        return ChatRequest.model_validate_json(body)
    except ValidationError as exc:
        raise MalformedRequest(str(exc)) from exc


class ModerationPipeline:
    def __init__(self, settings: Settings, moderator: Moderator, flag_log: FlagLog) -> None:
        self.settings = settings
        self.moderator = moderator
        self.flag_log = flag_log

    def is_whitelisted(self, model: str) -> bool:
        return model in self.settings.white_list_models

    async def decide(
        self,
        body: bytes,
        ctx: RequestContext | None = None,
        *,
        chat_req: ChatRequest | None = None,
    ) -> Decision:
        """
        Raises:
            MalformedRequest: body is not a chat request (client error) or the
                model rewrite could not re-encode it.
            ModerationError: the moderation service failed; not retried.
        """
        ctx = ctx or RequestContext(request_id=f"req-{uuid.uuid4().hex[:12]}")
        if chat_req is None:
            chat_req = parse_chat_request(body)
        ctx.model = chat_req.model
        ctx.stream = chat_req.stream

        # 全文长度决定是否替换 model，与后续审核用的文本相互独立
        content = extract_full_context(chat_req.messages)
        ctx.full_context_chars = len(content)
        whitelisted = self.is_whitelisted(chat_req.model)

        replace_model = select_rewrite_model(len(content), self.settings)
        if replace_model:
            logger.warning(
                "content over size threshold, replacing model request_id=%s new_model=%s chars=%d",
                ctx.request_id,
                replace_model,
                len(content),
            )
            body = replace_model_value(body, replace_model)
            ctx.rewritten_model = replace_model
            ctx.add_reason(REASON_SIZE_REWRITE)

        if whitelisted:
            ctx.add_reason(REASON_WHITELISTED)
            logger.info("model whitelisted, skip moderation request_id=%s model=%s", ctx.request_id, chat_req.model)
            return self._forward(ctx, body, REASON_WHITELISTED)

        if not self.settings.full_context_moderate:
            content = extract_last_user(chat_req.messages)
        ctx.moderated_chars = len(content)

        if len(content) < self.settings.min_chars_moderate:
            ctx.add_reason(REASON_BELOW_THRESHOLD)
            logger.info(
                "content below min chars, skip moderation request_id=%s chars=%d min=%d",
                ctx.request_id,
                len(content),
                self.settings.min_chars_moderate,
            )
            return self._forward(ctx, body, REASON_BELOW_THRESHOLD)

        chunks = split_text(content, self.settings.moderation_chunk_chars)
        ctx.chunks_total = len(chunks)
        if len(chunks) > 1:
            logger.info("content split for moderation request_id=%s chunks=%d", ctx.request_id, len(chunks))

        for index, chunk in enumerate(chunks):
            verdict = await self.moderator.moderate(chunk)
            ctx.chunks_checked += 1
            if verdict.flagged:
                ctx.add_reason(REASON_FLAGGED)
                await asyncio.to_thread(self.flag_log.record, chunk)
                log_event(
                    "moderation_reject",
                    request_id=ctx.request_id,
                    model=chat_req.model,
                    stream=chat_req.stream,
                    chunk_index=index,
                    chunks_total=len(chunks),
                    reasons=list(ctx.decision_reasons),
                    elapsed_ms=ctx.elapsed_ms(),
                )
                return RejectDecision(
                    flagged_text=chunk,
                    model=chat_req.model,
                    stream=chat_req.stream,
                    chunk_index=index,
                )

        ctx.add_reason(REASON_PASSED)
        return self._forward(ctx, body, REASON_PASSED)

    def _forward(self, ctx: RequestContext, body: bytes, reason: str) -> ForwardDecision:
        log_event(
            "moderation_forward",
            request_id=ctx.request_id,
            reason=reason,
            model=ctx.model,
            rewritten_model=ctx.rewritten_model,
            chunks_checked=ctx.chunks_checked,
            reasons=list(ctx.decision_reasons),
            elapsed_ms=ctx.elapsed_ms(),
        )
        return ForwardDecision(body=body, reason=reason, rewritten_model=ctx.rewritten_model)

"""Remote moderation service client."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
from pydantic import ValidationError

from modgate.config.settings import Settings
from modgate.core.errors import MalformedModerationResponse, ModerationUnavailable
from modgate.core.models import ModerationResponse
from modgate.util.logger import logger


@dataclass(slots=True)
class ModerationVerdict:
    flagged: bool
    model: str


class ModerationClient:
    """Async client for an OpenAI-style /moderations endpoint, one chunk per call."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._client: httpx.AsyncClient | None = None
        self._client_lock: asyncio.Lock | None = None

    def select_model(self, text: str) -> str:
        if len(text) < self.settings.moderation_short_max_chars:
            return self.settings.moderation_short_model
        return self.settings.moderation_long_model

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        if self._client_lock is None:
            self._client_lock = asyncio.Lock()
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    http2=False,
                    timeout=httpx.Timeout(self.settings.moderation_timeout_seconds),
                )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def moderate(self, text: str) -> ModerationVerdict:
        model = self.select_model(text)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.openai_api_key}",
        }
        client = await self._get_client()
        try:
            response = await client.post(
                self.settings.moderation_api_url,
                json={"model": model, "input": text},
                headers=headers,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            detail = (str(exc) or "").strip() or exc.__class__.__name__
            logger.warning("moderation http_error model=%s error=%s", model, detail)
            raise ModerationUnavailable(f"moderation_unreachable: {detail}") from exc

        if not response.is_success:
            logger.warning("moderation bad status model=%s status=%s", model, response.status_code)
            raise ModerationUnavailable(f"moderation API returned status code {response.status_code}")

        try:
            parsed = ModerationResponse.model_validate_json(response.content)
        except ValidationError as exc:
            logger.warning("moderation invalid payload model=%s bytes=%d", model, len(response.content))
            raise MalformedModerationResponse("moderation response does not match results schema") from exc

        # 上游按单条 input 返回结果，只看第一条
        flagged = bool(parsed.results) and parsed.results[0].flagged
        logger.info("moderation verdict flagged=%s model=%s chars=%d", flagged, model, len(text))
        if flagged:
            logger.info("moderation blocked content=%s", text)
        return ModerationVerdict(flagged=flagged, model=model)

"""
下游转发：复制请求头、发送原始 body，并把上游响应原样流式返回。
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator, Mapping

import httpx
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from modgate.config.settings import settings
from modgate.core.errors import ForwardingFailure
from modgate.util.logger import logger


_HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}

_upstream_async_client: httpx.AsyncClient | None = None
_upstream_client_lock: Any = None


def _upstream_http_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.upstream_max_connections)),
        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
    )


def _upstream_http_timeout() -> httpx.Timeout:
    timeout = float(settings.upstream_timeout_seconds)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)


async def _get_upstream_async_client() -> httpx.AsyncClient:
    global _upstream_async_client, _upstream_client_lock
    if _upstream_async_client is not None:
        return _upstream_async_client
    if _upstream_client_lock is None:
        _upstream_client_lock = asyncio.Lock()
    async with _upstream_client_lock:
        if _upstream_async_client is None:
            _upstream_async_client = httpx.AsyncClient(
                http2=False,
                timeout=_upstream_http_timeout(),
                limits=_upstream_http_limits(),
            )
    return _upstream_async_client


async def close_upstream_async_client() -> None:
    global _upstream_async_client
    if _upstream_async_client is not None:
        await _upstream_async_client.aclose()
        _upstream_async_client = None


def _build_forward_headers(headers: Mapping[str, str]) -> list[tuple[str, str]]:
    """Copy inbound headers, drop ones the client library must own, force JSON content type."""
    items = headers.multi_items() if isinstance(headers, httpx.Headers) else headers.items()
    forwarded: list[tuple[str, str]] = []
    excluded = {"host", "content-length", "content-type", *_HOP_BY_HOP_HEADERS}
    for key, value in items:
        if key.lower() in excluded:
            continue
        forwarded.append((key, value))
    forwarded.append(("Content-Type", "application/json"))
    return forwarded


def _build_response_headers(headers: httpx.Headers) -> list[tuple[str, str]]:
    # 重复的头（如 Set-Cookie）逐条保留，不能用逗号合并
    return [(key, value) for key, value in headers.multi_items() if key.lower() not in _HOP_BY_HOP_HEADERS]


async def _relay_body(resp: httpx.Response, url: str) -> AsyncGenerator[bytes, None]:
    try:
        async for chunk in resp.aiter_raw():
            yield chunk
    except httpx.HTTPError as exc:
        # 已经开始向客户端写响应，只能截断
        logger.warning("forward stream interrupted url=%s error=%s", url, (str(exc) or "").strip() or exc.__class__.__name__)


async def forward_request(body: bytes, headers: Mapping[str, str], url: str | None = None) -> StreamingResponse:
    target = url or settings.target_url
    logger.info("forwarding request to target url=%s payload_bytes=%d", target, len(body))
    client = await _get_upstream_async_client()
    try:
        upstream_req = client.build_request("POST", target, content=body, headers=_build_forward_headers(headers))
        resp = await client.send(upstream_req, stream=True)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        detail = (str(exc) or "").strip() or "connection_failed_or_timeout"
        logger.warning("forward http_error url=%s error=%s", target, detail)
        raise ForwardingFailure(f"upstream_unreachable: {detail}") from exc
    logger.debug("forward connected url=%s status=%s", target, resp.status_code)
    response = StreamingResponse(
        _relay_body(resp, target),
        status_code=resp.status_code,
        background=BackgroundTask(resp.aclose),
    )
    for key, value in _build_response_headers(resp.headers):
        response.headers.append(key, value)
    return response

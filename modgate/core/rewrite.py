"""Size-based model substitution on the raw request body."""

from __future__ import annotations

import json

from modgate.config.settings import Settings
from modgate.core.errors import MalformedRequest


def select_rewrite_model(content_length: int, settings: Settings) -> str | None:
    """Pick a replacement model from the full-context length, or None to keep the requested one."""
    if content_length > settings.fast_tier_min_chars:
        return settings.fast_tier_model
    if content_length > settings.mid_tier_min_chars:
        return settings.mid_tier_model
    return None


def replace_model_value(body: bytes, new_model: str) -> bytes:
    """
    在通用 JSON 文档上替换 model 值，保留结构体未声明的其它字段。
    仅当 model 存在且为字符串时替换。
    """
    try:
        document = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedRequest(f"invalid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise MalformedRequest("invalid JSON: body is not an object")

    if isinstance(document.get("model"), str):
        document["model"] = new_model

    try:
        encoded = json.dumps(document, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
    except ValueError as exc:
        # 超出范围的数字会被解析成 inf，无法重新编码为合法 JSON
        raise MalformedRequest(f"cannot re-encode body: {exc}") from exc
    return encoded.encode("utf-8")

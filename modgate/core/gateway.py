"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from modgate.adapters.openai_compat import router as openai_compat
from modgate.adapters.openai_compat.upstream import close_upstream_async_client
from modgate.config.settings import settings
from modgate.util.logger import logger


app = FastAPI(title=settings.app_name)
app.include_router(openai_compat.router, prefix="/v1")


def render_banned_content(raw: str) -> str:
    # 日志内容不做转义，仅把换行渲染为 <br>
    return f"<html><body>{raw.replace(chr(10), '<br>')}</body></html>"


@app.middleware("http")
async def unhandled_error_middleware(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as exc:  # pragma: no cover - fail-safe
        logger.exception("gateway unhandled exception path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": f"gateway internal error: {exc}",
                    "type": "modgate_error",
                    "code": "gateway_internal_error",
                }
            },
        )


@app.get("/")
def index() -> PlainTextResponse:
    return PlainTextResponse("Service Running...")


@app.get("/health")
def health() -> dict:
    logger.debug("health check")
    return {"status": "ok"}


@app.get("/api/getBannedContent")
def get_banned_content():
    try:
        raw = openai_compat.flag_log.read_all()
    except OSError as exc:
        logger.warning("read flag log failed path=%s error=%s", openai_compat.flag_log.path, exc)
        return JSONResponse(status_code=200, content={"error": "Error reading file"})
    return HTMLResponse(content=render_banned_content(raw), media_type="text/html; charset=utf-8")


@app.on_event("shutdown")
async def shutdown_cleanup() -> None:
    await close_upstream_async_client()
    await openai_compat.close_moderation_async_client()

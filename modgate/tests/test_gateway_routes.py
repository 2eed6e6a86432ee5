import json

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.requests import ClientDisconnect, Request

from modgate.adapters.openai_compat import router as openai_router
from modgate.adapters.openai_compat import upstream
from modgate.config.settings import Settings
from modgate.core.errors import MalformedModerationResponse, ModerationUnavailable
from modgate.core.flag_log import FlagLog
from modgate.core.gateway import app, render_banned_content
from modgate.core.moderation import ModerationVerdict
from modgate.core.pipeline import ModerationPipeline

TARGET_URL = "https://downstream.example.com/v1/chat/completions"


class StubModerator:
    def __init__(self, flagged: bool = False, error: Exception | None = None) -> None:
        self.flagged = flagged
        self.error = error
        self.calls: list[str] = []

    async def moderate(self, text: str) -> ModerationVerdict:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return ModerationVerdict(flagged=self.flagged, model="stub")


@pytest.fixture
def downstream(monkeypatch):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            headers={"content-type": "application/json", "x-downstream": "yes"},
            stream=httpx.ByteStream(
                json.dumps({"id": "chatcmpl-upstream", "choices": [{"message": {"content": "hello from model"}}]}).encode()
            ),
        )

    async def fake_get_client() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    monkeypatch.setattr(upstream, "_get_upstream_async_client", fake_get_client)
    return seen


def _install(monkeypatch, tmp_path, moderator: StubModerator, **overrides) -> FlagLog:
    settings = Settings(
        target_url=TARGET_URL,
        warning_msg="Rejected by moderation",
        min_chars_moderate=5,
        full_context_moderate=False,
        **overrides,
    )
    flag_log = FlagLog(tmp_path / "log.txt")
    monkeypatch.setattr(openai_router, "flag_log", flag_log)
    monkeypatch.setattr(openai_router, "pipeline", ModerationPipeline(settings, moderator, flag_log))
    return flag_log


def _chat(content: str, model: str = "x", stream: bool = False) -> dict:
    return {"model": model, "messages": [{"role": "user", "content": content}], "stream": stream}


def test_index_and_health():
    client = TestClient(app)
    assert client.get("/").text == "Service Running..."
    assert client.get("/health").json() == {"status": "ok"}


def test_short_content_is_forwarded_unchanged(monkeypatch, tmp_path, downstream):
    moderator = StubModerator(flagged=True)
    _install(monkeypatch, tmp_path, moderator)
    raw = json.dumps(_chat("hi")).encode("utf-8")

    client = TestClient(app)
    response = client.post(
        "/v1/chat/completions",
        content=raw,
        headers={"Authorization": "Bearer client-key", "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.headers["x-downstream"] == "yes"
    assert response.json()["id"] == "chatcmpl-upstream"
    assert moderator.calls == []
    assert len(downstream) == 1
    assert downstream[0].content == raw
    assert downstream[0].headers["authorization"] == "Bearer client-key"


def test_flagged_content_returns_json_rejection_and_logs(monkeypatch, tmp_path, downstream):
    moderator = StubModerator(flagged=True)
    flag_log = _install(monkeypatch, tmp_path, moderator)

    client = TestClient(app)
    response = client.post("/v1/chat/completions", json=_chat("this is flagged content"))

    assert response.status_code == 200
    body = response.json()
    assert body["object"] == "chat.completion.chunk"
    assert body["model"] == "x"
    assert body["choices"][0]["delta"]["content"] == "Rejected by moderation"
    assert body["choices"][0]["finish_reason"] == "stop"
    assert downstream == []
    assert flag_log.read_all() == "this is flagged content\n"


def test_flagged_stream_request_returns_two_sse_frames(monkeypatch, tmp_path, downstream):
    _install(monkeypatch, tmp_path, StubModerator(flagged=True))

    client = TestClient(app)
    response = client.post("/v1/chat/completions", json=_chat("this is flagged content", model="M", stream=True))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = [frame for frame in response.text.split("\n\n") if frame]
    assert len(frames) == 2
    payload = json.loads(frames[0][len("data: "):])
    assert payload["model"] == "M"
    assert payload["choices"][0]["delta"]["content"] == "Rejected by moderation"
    assert frames[1] == "data: [DONE]"


def test_clean_content_is_moderated_then_forwarded(monkeypatch, tmp_path, downstream):
    moderator = StubModerator(flagged=False)
    _install(monkeypatch, tmp_path, moderator)

    client = TestClient(app)
    response = client.post("/v1/chat/completions", json=_chat("a perfectly fine question"))

    assert response.status_code == 200
    assert moderator.calls == ["a perfectly fine question"]
    assert len(downstream) == 1


def test_whitelisted_model_bypasses_failing_moderation(monkeypatch, tmp_path, downstream):
    moderator = StubModerator(error=ModerationUnavailable("down"))
    _install(monkeypatch, tmp_path, moderator, white_list_models=["trusted"])

    client = TestClient(app)
    response = client.post("/v1/chat/completions", json=_chat("long enough content", model="trusted"))

    assert response.status_code == 200
    assert moderator.calls == []
    assert len(downstream) == 1


@pytest.mark.parametrize("error", [ModerationUnavailable("status 500"), MalformedModerationResponse("bad json")])
def test_moderation_failure_returns_500(monkeypatch, tmp_path, downstream, error):
    _install(monkeypatch, tmp_path, StubModerator(error=error))

    client = TestClient(app)
    response = client.post("/v1/chat/completions", json=_chat("long enough content"))

    assert response.status_code == 500
    assert response.json()["error"]["message"] == "Moderation error"
    assert downstream == []


def test_invalid_json_returns_400(monkeypatch, tmp_path, downstream):
    moderator = StubModerator()
    _install(monkeypatch, tmp_path, moderator)

    client = TestClient(app)
    response = client.post("/v1/chat/completions", content=b"{broken", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_request"
    assert moderator.calls == []
    assert downstream == []


def test_unreadable_body_returns_400(monkeypatch, tmp_path, downstream):
    moderator = StubModerator()
    _install(monkeypatch, tmp_path, moderator)

    async def disconnected_body(self) -> bytes:
        raise ClientDisconnect()

    monkeypatch.setattr(Request, "body", disconnected_body)

    client = TestClient(app)
    response = client.post("/v1/chat/completions", json=_chat("hello there"))

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Error reading request body"
    assert moderator.calls == []
    assert downstream == []


def test_forwarding_failure_returns_500(monkeypatch, tmp_path):
    _install(monkeypatch, tmp_path, StubModerator())

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def fake_get_client() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    monkeypatch.setattr(upstream, "_get_upstream_async_client", fake_get_client)

    client = TestClient(app)
    response = client.post("/v1/chat/completions", json=_chat("hi"))

    assert response.status_code == 500
    assert response.json()["error"]["message"] == "Error forwarding request"


def test_banned_content_page_renders_log_lines(monkeypatch, tmp_path):
    flag_log = _install(monkeypatch, tmp_path, StubModerator())
    flag_log.append("first bad")
    flag_log.append("second bad")

    client = TestClient(app)
    response = client.get("/api/getBannedContent")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert response.text == "<html><body>first bad<br>second bad<br></body></html>"


def test_banned_content_page_without_log_file(monkeypatch, tmp_path):
    _install(monkeypatch, tmp_path, StubModerator())

    client = TestClient(app)
    response = client.get("/api/getBannedContent")

    assert response.status_code == 200
    assert response.json() == {"error": "Error reading file"}


def test_render_banned_content_does_not_escape():
    assert render_banned_content("<b>x</b>\n") == "<html><body><b>x</b><br></body></html>"

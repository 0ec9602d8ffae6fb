from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from src.botcall.client import ApiClient
from src.botcall.errors import ApiError, InvalidAttachmentSource
from src.botcall.params import InputFile
from src.datatypes import ApiMode, ClientConfig
from tests.helpers.http import FakeSink, RecordingHandler, mock_client, ok

TOKEN = "123:ABC-secret"


def _call(
    handler: RecordingHandler,
    method: str,
    payload: dict[str, Any] | None = None,
    *,
    config: ClientConfig | None = None,
    response: FakeSink | None = None,
) -> Any:
    async def _run() -> Any:
        async with mock_client(handler) as http:
            client = ApiClient(TOKEN, config, http_client=http)
            return await client.call_api(method, payload, response=response)

    return asyncio.run(_run())


def test_json_call_hits_method_url_and_returns_result() -> None:
    handler = RecordingHandler([ok({"message_id": 7})])

    result = _call(handler, "sendMessage", {"chat_id": 1, "text": "hi", "parse_mode": None})

    assert result == {"message_id": 7}
    request = handler.last
    assert str(request.url) == f"https://api.telegram.org/bot{TOKEN}/sendMessage"
    assert request.headers["content-type"] == "application/json"
    assert handler.last_json() == {"chat_id": 1, "text": "hi"}


@pytest.mark.parametrize(
    ("config", "expected"),
    [
        (ClientConfig(test_env=True), f"https://api.telegram.org/bot{TOKEN}/test/getMe"),
        (ClientConfig(api_mode=ApiMode.USER), f"https://api.telegram.org/user{TOKEN}/getMe"),
        (ClientConfig(api_root="http://localhost:8081"), f"http://localhost:8081/bot{TOKEN}/getMe"),
    ],
)
def test_method_url_layout(config: ClientConfig, expected: str) -> None:
    handler = RecordingHandler([ok(True)])

    _call(handler, "getMe", config=config)

    assert str(handler.last.url) == expected


def test_error_envelope_raises_api_error() -> None:
    handler = RecordingHandler(
        [
            httpx.Response(
                429,
                json={
                    "ok": False,
                    "error_code": 429,
                    "description": "Too Many Requests: retry after 3",
                    "parameters": {"retry_after": 3},
                },
            )
        ]
    )

    with pytest.raises(ApiError) as excinfo:
        _call(handler, "sendMessage", {"chat_id": 1, "text": "x"})

    error = excinfo.value
    assert error.method == "sendMessage"
    assert error.error_code == 429
    assert error.parameters == {"retry_after": 3}
    assert "Too Many Requests" in str(error)


def test_non_json_response_raises_api_error() -> None:
    handler = RecordingHandler([httpx.Response(502, content=b"<html>Bad Gateway</html>")])

    with pytest.raises(ApiError) as excinfo:
        _call(handler, "getMe")

    assert excinfo.value.error_code == 502
    assert "non-JSON" in excinfo.value.description


def test_multipart_call_streams_attachment(write_file: Callable[..., Path]) -> None:
    path = write_file("cat.jpg", b"\xff\xd8jpeg")
    handler = RecordingHandler([ok({"message_id": 9})])

    result = _call(handler, "sendPhoto", {"chat_id": 5, "photo": InputFile(source=str(path))})

    assert result == {"message_id": 9}
    request = handler.last
    assert request.headers["content-type"].startswith("multipart/form-data; boundary=")
    assert b'name="photo"; filename="cat.jpg"' in request.content
    assert b"\xff\xd8jpeg" in request.content
    assert b'name="chat_id"' in request.content


def test_transport_error_message_is_redacted() -> None:
    def _fail(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError(f"connection refused for {request.url}", request=request)

    handler = RecordingHandler(fallback=_fail)

    with pytest.raises(httpx.ConnectError) as excinfo:
        _call(handler, "getMe")

    message = str(excinfo.value)
    assert "ABC-secret" not in message
    assert "/bot123:[REDACTED]/" in message


def test_encoding_error_message_is_redacted(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _broken_encode(self: ApiClient, payload: Any) -> Any:
        raise InvalidAttachmentSource(f"Unable to upload '/srv/bot{TOKEN}/x', not a file")

    monkeypatch.setattr(ApiClient, "encode", _broken_encode)
    handler = RecordingHandler()

    with pytest.raises(InvalidAttachmentSource) as excinfo:
        _call(handler, "sendDocument", {"document": InputFile(source="/srv/x")})

    assert "ABC-secret" not in str(excinfo.value)
    assert handler.requests == []


def test_webhook_reply_bypasses_outbound_request() -> None:
    handler = RecordingHandler()
    sink = FakeSink()

    result = _call(handler, "sendMessage", {"chat_id": 2, "text": "pong"}, response=sink)

    assert result is True
    assert handler.requests == []
    assert sink.ended
    assert sink.body == b'{"method":"sendMessage","chat_id":2,"text":"pong"}'


def test_media_call_goes_outbound_even_with_webhook_response() -> None:
    handler = RecordingHandler([ok({"message_id": 1})])
    sink = FakeSink()

    result = _call(
        handler,
        "sendDocument",
        {"chat_id": 2, "document": InputFile(source=b"pdf", filename="a.pdf")},
        response=sink,
    )

    assert result == {"message_id": 1}
    assert len(handler.requests) == 1
    assert sink.chunks == []
    assert not sink.ended


def test_sent_headers_force_outbound_request() -> None:
    handler = RecordingHandler([ok(True)])
    sink = FakeSink(headers_sent=True)

    result = _call(handler, "sendChatAction", {"chat_id": 2, "action": "typing"}, response=sink)

    assert result is True
    assert handler.last_json() == {"chat_id": 2, "action": "typing"}
    assert sink.chunks == []


def test_disabled_webhook_reply_goes_outbound() -> None:
    handler = RecordingHandler([ok(True)])
    sink = FakeSink()

    _call(
        handler,
        "sendMessage",
        {"chat_id": 2, "text": "x"},
        config=ClientConfig(webhook_reply=False),
        response=sink,
    )

    assert len(handler.requests) == 1
    assert sink.chunks == []


def test_owned_client_is_closed_on_exit() -> None:
    async def _run() -> httpx.AsyncClient:
        async with ApiClient(TOKEN) as client:
            http = client._http
        return http

    http = asyncio.run(_run())

    assert http.is_closed


def test_injected_client_is_left_open() -> None:
    async def _run() -> bool:
        async with mock_client(RecordingHandler()) as http:
            async with ApiClient(TOKEN, http_client=http):
                pass
            return http.is_closed

    assert asyncio.run(_run()) is False


def test_url_attachment_uses_configured_fetch_timeout() -> None:
    def _route(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, content=b"remote-bytes")
        return ok({"message_id": 3})

    handler = RecordingHandler(fallback=_route)

    _call(
        handler,
        "sendVideo",
        {"chat_id": 1, "video": InputFile(url="https://cdn.example.com/clip.mp4")},
        config=ClientConfig(attachment_timeout_seconds=12.0),
    )

    fetch, upload = handler.requests
    assert fetch.extensions["timeout"]["read"] == 12.0
    assert b'name="video"; filename="video.mp4"' in upload.content
    assert b"remote-bytes" in upload.content


def test_error_envelope_with_null_fields_falls_back_to_status() -> None:
    handler = RecordingHandler(
        [httpx.Response(400, json={"ok": False, "error_code": None, "description": None})]
    )

    with pytest.raises(ApiError) as excinfo:
        _call(handler, "getMe")

    assert excinfo.value.error_code == 400
    assert excinfo.value.description == "Unknown error"
    assert excinfo.value.parameters == {}

"""Tests for the Telegram Bot API object store."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from signal_leaderboard.objectstore.errors import (
    ContentUnchangedError,
    PointerStaleError,
    TransientIOError,
)
from signal_leaderboard.objectstore.telegram import (
    RateLimiter,
    TelegramObjectStore,
    classify_api_error,
)

API = "https://api.test"
TOKEN = "123:abc"
CHANNEL = "-100555"

Handler = Callable[[str, httpx.Request], httpx.Response]


def ok(result: Any) -> httpx.Response:
    return httpx.Response(200, json={"ok": True, "result": result})


def fail(description: str, status: int = 400) -> httpx.Response:
    return httpx.Response(status, json={"ok": False, "description": description})


def make_store(handler: Handler, calls: list[str] | None = None) -> TelegramObjectStore:
    def dispatch(request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        if calls is not None:
            calls.append(method)
        return handler(method, request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(dispatch))
    return TelegramObjectStore(
        bot_token=TOKEN, api_base=API, requests_per_second=1000, client=client
    )


class TestErrorClassification:
    """Tests for mapping Bot API descriptions to exceptions."""

    def test_not_modified(self) -> None:
        error = classify_api_error(
            "editMessageText",
            "Bad Request: message is not modified: specified new message content is the same",
        )
        assert isinstance(error, ContentUnchangedError)

    @pytest.mark.parametrize(
        "description",
        [
            "Bad Request: message can't be edited",
            "Bad Request: message to edit not found",
            "Bad Request: MESSAGE_ID_INVALID",
        ],
    )
    def test_stale(self, description: str) -> None:
        assert isinstance(classify_api_error("editMessageMedia", description), PointerStaleError)

    def test_anything_else_is_transient(self) -> None:
        error = classify_api_error("sendMessage", "Too Many Requests: retry after 5", 429)
        assert isinstance(error, TransientIOError)
        assert error.status_code == 429


class TestRateLimiter:
    """Tests for the rate limiter."""

    @pytest.mark.asyncio
    async def test_acquire_records_time(self) -> None:
        limiter = RateLimiter(max_requests_per_second=1000)
        await limiter.acquire()
        await limiter.acquire()
        assert limiter._last_request_time > 0


class TestPointer:
    """Tests for getChat pointer discovery."""

    @pytest.mark.asyncio
    async def test_pinned_document(self) -> None:
        def handler(method: str, request: httpx.Request) -> httpx.Response:
            assert method == "getChat"
            assert json.loads(request.content) == {"chat_id": CHANNEL}
            return ok(
                {
                    "id": int(CHANNEL),
                    "pinned_message": {
                        "message_id": 42,
                        "document": {"file_id": "FILE42", "file_name": "sol-db.json"},
                    },
                }
            )

        async with make_store(handler) as store:
            pointer = await store.get_pointer(CHANNEL)

        assert pointer is not None
        assert pointer.pointer_id == 42
        assert pointer.file_ref == "FILE42"
        assert pointer.file_name == "sol-db.json"

    @pytest.mark.asyncio
    async def test_no_pinned_message(self) -> None:
        async with make_store(lambda method, request: ok({"id": int(CHANNEL)})) as store:
            assert await store.get_pointer(CHANNEL) is None

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self) -> None:
        def handler(method: str, request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("boom", request=request)

        async with make_store(handler) as store:
            with pytest.raises(TransientIOError):
                await store.get_pointer(CHANNEL)

    @pytest.mark.asyncio
    async def test_non_json_response_is_transient(self) -> None:
        async with make_store(lambda method, request: httpx.Response(502, text="Bad Gateway")) as store:
            with pytest.raises(TransientIOError) as exc_info:
                await store.get_pointer(CHANNEL)
        assert exc_info.value.status_code == 502


class TestDocuments:
    """Tests for upload, replace and download."""

    @pytest.mark.asyncio
    async def test_upload(self) -> None:
        def handler(method: str, request: httpx.Request) -> httpx.Response:
            assert method == "sendDocument"
            assert b"sol-db.json" in request.content
            return ok({"message_id": 7, "document": {"file_id": "F7"}})

        async with make_store(handler) as store:
            blob = await store.upload(CHANNEL, b"{}", "sol-db.json", "caption")
        assert blob.pointer_id == 7
        assert blob.blob_ref == "F7"

    @pytest.mark.asyncio
    async def test_replace_unchanged_keeps_pointer(self) -> None:
        calls: list[str] = []

        def handler(method: str, request: httpx.Request) -> httpx.Response:
            return fail("Bad Request: message is not modified")

        async with make_store(handler, calls) as store:
            blob = await store.replace(CHANNEL, 9, b"{}", "sol-db.json")
        assert blob.pointer_id == 9
        assert calls == ["editMessageMedia"]

    @pytest.mark.asyncio
    async def test_replace_stale_uploads_new_message(self) -> None:
        calls: list[str] = []

        def handler(method: str, request: httpx.Request) -> httpx.Response:
            if method == "editMessageMedia":
                return fail("Bad Request: message can't be edited")
            return ok({"message_id": 10, "document": {"file_id": "F10"}})

        async with make_store(handler, calls) as store:
            blob = await store.replace(CHANNEL, 9, b"{}", "sol-db.json")
        assert blob.pointer_id == 10
        assert calls == ["editMessageMedia", "sendDocument"]

    @pytest.mark.asyncio
    async def test_download(self) -> None:
        def handler(method: str, request: httpx.Request) -> httpx.Response:
            if method == "getFile":
                return ok({"file_id": "F1", "file_path": "documents/file_1.json"})
            assert request.url.path == f"/file/bot{TOKEN}/documents/file_1.json"
            return httpx.Response(200, content=b'{"a": 1}')

        async with make_store(handler) as store:
            assert await store.download("F1") == b'{"a": 1}'

    @pytest.mark.asyncio
    async def test_download_http_error(self) -> None:
        def handler(method: str, request: httpx.Request) -> httpx.Response:
            if method == "getFile":
                return ok({"file_id": "F1", "file_path": "documents/file_1.json"})
            return httpx.Response(404)

        async with make_store(handler) as store:
            with pytest.raises(TransientIOError):
                await store.download("F1")


class TestMessages:
    """Tests for pins and text messages."""

    @pytest.mark.asyncio
    async def test_pin_failure_returns_false(self) -> None:
        async with make_store(lambda method, request: fail("Forbidden", 403)) as store:
            assert await store.pin(CHANNEL, 5) is False
            assert await store.unpin(CHANNEL, 5) is False

    @pytest.mark.asyncio
    async def test_send_text_uses_html(self) -> None:
        def handler(method: str, request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert method == "sendMessage"
            assert body["parse_mode"] == "HTML"
            assert body["disable_web_page_preview"] is True
            return ok({"message_id": 11})

        async with make_store(handler) as store:
            assert await store.send_text(CHANNEL, "<b>hi</b>") == 11

    @pytest.mark.asyncio
    async def test_edit_unchanged_raises(self) -> None:
        async with make_store(lambda method, request: fail("message is not modified")) as store:
            with pytest.raises(ContentUnchangedError):
                await store.edit_text(CHANNEL, 11, "<b>hi</b>")

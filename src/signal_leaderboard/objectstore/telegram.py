"""Telegram Bot API object store with rate limiting and error classification."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import httpx

from signal_leaderboard.objectstore.errors import (
    ContentUnchangedError,
    PointerStaleError,
    TransientIOError,
)
from signal_leaderboard.objectstore.models import PinnedPointer, StoredBlob

logger = logging.getLogger(__name__)

# Constants
DEFAULT_API_BASE = "https://api.telegram.org"
MAX_REQUESTS_PER_SECOND = 20
DEFAULT_TIMEOUT_SECONDS = 30.0

_UNCHANGED_MARKERS = ("message is not modified",)
_STALE_MARKERS = (
    "message can't be edited",
    "message to edit not found",
    "message_id_invalid",
    "message not found",
)


class RateLimiter:
    """Token bucket rate limiter for API requests."""

    def __init__(self, max_requests_per_second: float = MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


def classify_api_error(method: str, description: str, status_code: int | None = None) -> Exception:
    """Map a Bot API error description to an object store exception."""
    lowered = description.lower()
    if any(marker in lowered for marker in _UNCHANGED_MARKERS):
        return ContentUnchangedError(f"{method}: {description}")
    if any(marker in lowered for marker in _STALE_MARKERS):
        return PointerStaleError(f"{method}: {description}")
    return TransientIOError(f"{method}: {description}", status_code=status_code)


class TelegramObjectStore:
    """Object store backed by Telegram channels, pinned messages and documents.

    Each channel holds one pinned message acting as the document pointer.
    Documents are attached files; views are HTML text messages.

    Example:
        >>> async with TelegramObjectStore(bot_token="123:abc") as store:
        ...     pointer = await store.get_pointer("-1001234567890")
    """

    def __init__(
        self,
        *,
        bot_token: str,
        api_base: str = DEFAULT_API_BASE,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            bot_token: Bot API token. Never logged.
            api_base: Bot API endpoint URL.
            requests_per_second: Client-side rate limit.
            timeout_seconds: HTTP timeout for each call.
            client: Optional preconfigured HTTP client (used by tests).
        """
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._rate_limiter = RateLimiter(requests_per_second)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

        logger.info(
            "Initialized TelegramObjectStore with api_base=%s, rate_limit=%.1f req/s",
            self._api_base,
            requests_per_second,
        )

    async def __aenter__(self) -> TelegramObjectStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _method_url(self, method: str) -> str:
        return f"{self._api_base}/bot{self._bot_token}/{method}"

    async def _call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        files: dict[str, tuple[str, bytes, str]] | None = None,
    ) -> Any:
        await self._rate_limiter.acquire()
        try:
            if files:
                response = await self._client.post(
                    self._method_url(method),
                    data={k: str(v) for k, v in (params or {}).items()},
                    files=files,
                )
            else:
                response = await self._client.post(self._method_url(method), json=params or {})
        except httpx.HTTPError as e:
            raise TransientIOError(f"{method}: {type(e).__name__}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientIOError(
                f"{method}: non-JSON response (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from e

        if not payload.get("ok"):
            description = str(payload.get("description") or f"HTTP {response.status_code}")
            raise classify_api_error(method, description, response.status_code)
        return payload.get("result")

    async def get_pointer(self, channel: str) -> PinnedPointer | None:
        chat = await self._call("getChat", {"chat_id": channel})
        pinned = (chat or {}).get("pinned_message")
        if not pinned:
            return None
        document = pinned.get("document") or {}
        return PinnedPointer(
            pointer_id=int(pinned["message_id"]),
            file_ref=document.get("file_id"),
            file_name=document.get("file_name"),
            text=pinned.get("text"),
        )

    async def upload(
        self, channel: str, data: bytes, filename: str, caption: str = ""
    ) -> StoredBlob:
        result = await self._call(
            "sendDocument",
            {"chat_id": channel, "caption": caption},
            files={"document": (filename, data, "application/json")},
        )
        logger.debug("Uploaded %s to %s as message %s", filename, channel, result["message_id"])
        return StoredBlob(
            pointer_id=int(result["message_id"]),
            blob_ref=(result.get("document") or {}).get("file_id"),
        )

    async def replace(
        self,
        channel: str,
        pointer_id: int,
        data: bytes,
        filename: str,
        caption: str = "",
    ) -> StoredBlob:
        """Replace the document attached to ``pointer_id``.

        When the message can no longer be edited the document is uploaded
        as a new message and the new pointer is returned; the caller is
        responsible for re-pinning it.
        """
        media = json.dumps({"type": "document", "media": "attach://document", "caption": caption})
        try:
            result = await self._call(
                "editMessageMedia",
                {"chat_id": channel, "message_id": pointer_id, "media": media},
                files={"document": (filename, data, "application/json")},
            )
        except ContentUnchangedError:
            return StoredBlob(pointer_id=pointer_id)
        except PointerStaleError as e:
            logger.warning(
                "Message %d in %s is no longer editable (%s), uploading a new copy",
                pointer_id,
                channel,
                e,
            )
            return await self.upload(channel, data, filename, caption)

        if not isinstance(result, dict):
            return StoredBlob(pointer_id=pointer_id)
        return StoredBlob(
            pointer_id=int(result.get("message_id", pointer_id)),
            blob_ref=(result.get("document") or {}).get("file_id"),
        )

    async def download(self, blob_ref: str) -> bytes:
        file_info = await self._call("getFile", {"file_id": blob_ref})
        file_path = (file_info or {}).get("file_path")
        if not file_path:
            raise TransientIOError(f"getFile: no file_path for {blob_ref}")

        await self._rate_limiter.acquire()
        try:
            response = await self._client.get(
                f"{self._api_base}/file/bot{self._bot_token}/{file_path}"
            )
        except httpx.HTTPError as e:
            raise TransientIOError(f"download: {type(e).__name__}") from e
        if response.status_code != 200:
            raise TransientIOError(
                f"download: HTTP {response.status_code}", status_code=response.status_code
            )
        return response.content

    async def pin(self, channel: str, pointer_id: int) -> bool:
        try:
            await self._call(
                "pinChatMessage",
                {"chat_id": channel, "message_id": pointer_id, "disable_notification": True},
            )
        except (TransientIOError, PointerStaleError, ContentUnchangedError) as e:
            logger.warning("Pin of message %d in %s failed (non-fatal): %s", pointer_id, channel, e)
            return False
        return True

    async def unpin(self, channel: str, pointer_id: int) -> bool:
        try:
            await self._call("unpinChatMessage", {"chat_id": channel, "message_id": pointer_id})
        except (TransientIOError, PointerStaleError, ContentUnchangedError) as e:
            logger.warning("Unpin of message %d in %s failed (non-fatal): %s", pointer_id, channel, e)
            return False
        return True

    async def send_text(self, channel: str, text: str) -> int:
        result = await self._call(
            "sendMessage",
            {
                "chat_id": channel,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
        )
        return int(result["message_id"])

    async def edit_text(self, channel: str, pointer_id: int, text: str) -> None:
        await self._call(
            "editMessageText",
            {
                "chat_id": channel,
                "message_id": pointer_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
        )

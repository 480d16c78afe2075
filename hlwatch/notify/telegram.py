from __future__ import annotations

import asyncio
from typing import List, Optional, Protocol

import aiohttp
from loguru import logger as log

from hlwatch.core.errors import NotificationSendError


class NotificationSink(Protocol):
    async def send(self, text: str) -> bool: ...

    async def close(self) -> None: ...


class TelegramSink:
    """
    Sends HTML messages to one Telegram chat.

    send() is fire-and-forget from the caller's point of view: failures are
    logged and reported as False, never raised and never retried.
    """

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        api_base: str = "https://api.telegram.org",
        timeout_sec: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._api_base = api_base.rstrip("/")
        self._timeout_sec = timeout_sec
        self._session = session
        self._owns_session = session is None

    @property
    def is_configured(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    async def send(self, text: str) -> bool:
        if not self.is_configured:
            log.warning(f"Telegram not configured, dropping notification: {text[:80]!r}")
            return False
        try:
            await self._post(text)
        except NotificationSendError as e:
            log.error(f"Failed to send notification: {e}")
            return False
        log.info("Notification sent")
        return True

    async def _post(self, text: str) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout_sec))
            self._owns_session = True
        url = f"{self._api_base}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            async with self._session.post(url, json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    raise NotificationSendError(f"Telegram API error {response.status}: {body[:200]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NotificationSendError(repr(e)) from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


class LogSink:
    """Dry-run sink: writes notifications to the log instead of Telegram."""

    def __init__(self) -> None:
        self.sent: List[str] = []

    async def send(self, text: str) -> bool:
        self.sent.append(text)
        log.info(f"[dry-run] notification:\n{text}")
        return True

    async def close(self) -> None:
        return None

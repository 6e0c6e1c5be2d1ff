"""Telegram notification service."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Collection

import aiohttp
import certifi

from ..config import TelegramConfig
from ..errors import DeliveryFailure

logger = logging.getLogger(__name__)

# Telegram rejects sendMessage texts longer than this.
MESSAGE_LIMIT = 4096


def split_message(text: str, limit: int = MESSAGE_LIMIT) -> list[str]:
    """Split text into chunks of at most ``limit`` characters, preferring line breaks."""
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return chunks


class TelegramNotifier:
    """Send notifications to one or more Telegram chats through a bot."""

    def __init__(self, config: TelegramConfig) -> None:
        self.bot_token = config.bot_token
        self.timeout = aiohttp.ClientTimeout(total=15)

    async def _post(
        self, session: aiohttp.ClientSession, chat_id: str, text: str
    ) -> None:
        url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        async with session.post(url, json=payload) as response:
            if response.status != 200:
                raise DeliveryFailure(f"Telegram returned HTTP {response.status}")

    async def _send_to(
        self, session: aiohttp.ClientSession, chat_id: str, text: str
    ) -> bool:
        try:
            for chunk in split_message(text):
                await self._post(session, chat_id, chunk)
        except (DeliveryFailure, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Failed to send Telegram message to %s: %s", chat_id, e)
            return False
        return True

    async def send(
        self, text: str, destinations: Collection[str], subject: str = ""
    ) -> dict[str, bool]:
        """Send ``text`` to every chat id concurrently."""
        chat_ids = list(destinations)
        if not self.bot_token:
            logger.warning("Telegram bot token not configured")
            return {chat_id: False for chat_id in chat_ids}
        if not chat_ids:
            return {}

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(
            connector=connector, timeout=self.timeout
        ) as session:
            results = await asyncio.gather(
                *(self._send_to(session, chat_id, text) for chat_id in chat_ids)
            )

        delivered = dict(zip(chat_ids, results))
        sent = sum(delivered.values())
        if sent:
            logger.info("Telegram alert sent to %d/%d chats", sent, len(chat_ids))
        return delivered

"""Direct owner notifications over Telegram.

Used for alerts that must reach the human even when the agent is
asleep or broken (e.g. survival tier degradation). Sends are best-effort:
a failed send is logged and reported as False, never retried.

Setup:
1. Message @BotFather on Telegram -> /newbot
2. Copy the bot token into ~/.pulsekeeper/config.yaml (telegram_bot_token)
   or set PULSEKEEPER_TELEGRAM_BOT_TOKEN
3. Set owner_chat_id to your chat id
"""

import logging
import os
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Telegram rejects messages over 4096 chars
MAX_MESSAGE_LEN = 4000


class TelegramNotifier:
    """Telegram Bot API sender."""

    API_BASE = "https://api.telegram.org/bot{token}"

    def __init__(self, bot_token: str | None = None, timeout: float = 10.0):
        self.bot_token = bot_token or os.environ.get(
            "PULSEKEEPER_TELEGRAM_BOT_TOKEN", "")
        self.timeout = timeout
        self._http: httpx.AsyncClient | None = None

    @property
    def api_url(self) -> str:
        return self.API_BASE.format(token=self.bot_token)

    async def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    def is_configured(self) -> bool:
        return bool(self.bot_token)

    async def _api_call(self, method: str, data: dict[str, Any]) -> dict:
        client = await self._client()
        try:
            resp = await client.post(f"{self.api_url}/{method}", json=data)
            resp.raise_for_status()
            result = resp.json()
            if not result.get("ok"):
                logger.error(f"Telegram API error: {result}")
            return result
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram API call failed ({method}): {e}")
            return {"ok": False, "error": str(e)}

    async def send(self, recipient: str, text: str) -> bool:
        """Send ``text`` to chat ``recipient``. Returns True on delivery."""
        if not self.is_configured():
            logger.warning("Cannot notify owner: Telegram bot token not configured")
            return False
        if not recipient:
            logger.warning("Cannot notify owner: no owner chat id configured")
            return False

        if len(text) > MAX_MESSAGE_LEN:
            text = text[:MAX_MESSAGE_LEN - 3] + "..."
        result = await self._api_call("sendMessage", {"chat_id": recipient, "text": text})
        return bool(result.get("ok", False))

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

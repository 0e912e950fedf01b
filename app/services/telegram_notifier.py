# app/services/telegram_notifier.py
"""
Telegram Bot API client — the outbound messaging channel.

Endpoint: POST {TELEGRAM_API_URL}/bot{token}/sendMessage
Any transport error, non-200 status, or {"ok": false} body raises
DeliveryError so the dispatcher can mark the event failed and retry later.
"""

import httpx
from typing import Optional
from app.config import settings
from app.exceptions import DeliveryError
from app.utils.logger import get_logger

logger = get_logger(__name__)


class TelegramNotifier:
    def __init__(self, token: Optional[str] = None, api_url: Optional[str] = None,
                 timeout: float = None, client: Optional[httpx.AsyncClient] = None):
        self.token = token or settings.TELEGRAM_BOT_TOKEN
        self.api_url = (api_url or settings.TELEGRAM_API_URL).rstrip("/")
        self.timeout = settings.SEND_TIMEOUT_SECONDS if timeout is None else timeout
        self._client = client

    async def send(self, chat_id: str, text: str):
        if not self.token:
            raise DeliveryError("TELEGRAM_BOT_TOKEN is not configured")

        url = f"{self.api_url}/bot{self.token}/sendMessage"
        body = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        try:
            if self._client is not None:
                response = await self._client.post(url, json=body, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=body)
        except httpx.HTTPError as e:
            # str(e) may contain the URL, and with it the token
            raise DeliveryError(f"Telegram unreachable: {type(e).__name__}") from e

        if response.status_code != 200:
            raise DeliveryError(f"Telegram returned HTTP {response.status_code}: {_description(response)}")
        try:
            ok = response.json().get("ok", False)
        except ValueError:
            ok = False
        if not ok:
            raise DeliveryError(f"Telegram rejected message: {_description(response)}")
        logger.debug(f"[TELEGRAM] Delivered to chat {chat_id}")


def _description(response: httpx.Response) -> str:
    try:
        return response.json().get("description", "") or response.text[:200]
    except ValueError:
        return response.text[:200]

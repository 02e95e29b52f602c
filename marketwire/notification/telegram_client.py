"""
Telegram Bot API Client
Sends Markdown messages to users and groups via sendMessage
"""

from typing import Any, Dict

import requests
from loguru import logger

API_BASE = "https://api.telegram.org"
BLOCKED_MARKERS = ("bot was blocked", "user is deactivated", "bot was kicked")
NOT_FOUND_MARKERS = ("chat not found",)


class TelegramAPIError(Exception):
    """Exception raised for Telegram API errors"""
    def __init__(self, code: int, description: str):
        self.code = code
        self.description = description
        super().__init__(f"Telegram API Error {code}: {description}")

    @property
    def kind(self) -> str:
        """blocked | not_found | other"""
        text = (self.description or "").lower()
        if any(marker in text for marker in BLOCKED_MARKERS):
            return "blocked"
        if any(marker in text for marker in NOT_FOUND_MARKERS):
            return "not_found"
        return "other"


class TelegramClient:
    """Client for the Telegram Bot API"""

    def __init__(self, token: str, timeout: float = 10, session=None):
        if not token:
            raise ValueError("BOT_TOKEN is required to send Telegram messages")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.send_endpoint = f"{API_BASE}/bot{token}/sendMessage"

    def send_message(self, chat_id: Any, text: str) -> Dict[str, Any]:
        """
        Send one Markdown message with link previews disabled

        Raises:
            TelegramAPIError: API rejected the call or the request failed
        """
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }

        try:
            response = self.session.post(self.send_endpoint, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise TelegramAPIError(0, str(e)) from e

        try:
            data = response.json()
        except ValueError:
            data = {"ok": False, "error_code": response.status_code, "description": response.text}

        if response.status_code != 200 or not data.get("ok"):
            raise TelegramAPIError(
                data.get("error_code", response.status_code),
                data.get("description", "Unknown error"),
            )

        return data.get("result", {})


class LoggingClient:
    """Dry-run transport: logs the message instead of sending it"""

    def __init__(self):
        self.sent = []

    def send_message(self, chat_id: Any, text: str) -> Dict[str, Any]:
        self.sent.append((chat_id, text))
        logger.info(f"[dry-run] -> {chat_id}: {text.splitlines()[0] if text else ''}")
        return {"dry_run": True, "chat_id": chat_id}

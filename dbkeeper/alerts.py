"""
Failure alerts delivered to an operator channel.

TelegramAlertSink posts messages through the Telegram Bot API. When no
credentials are configured a NullAlertSink is used and alerting is off.
Delivery problems are logged and never raised: an alert that cannot be
sent must not change the outcome of a backup run.
"""

import logging
from typing import Optional

import httpx

from dbkeeper.models import TelegramCredentials


logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
REQUEST_TIMEOUT_SEC = 10.0
MAX_MESSAGE_LENGTH = 4096


class NullAlertSink:
    """Alert sink used when no credentials are configured."""

    def notify(self, message: str) -> bool:
        logger.debug("Alerting disabled, not sending: %s", message)
        return False


class TelegramAlertSink:
    """Sends alert messages to a Telegram chat."""

    def __init__(self, token: str, chat_id: str, timeout: float = REQUEST_TIMEOUT_SEC):
        self._token = token
        self.chat_id = chat_id
        self.timeout = timeout

    @property
    def url(self) -> str:
        return TELEGRAM_API_URL.format(token=self._token)

    def notify(self, message: str) -> bool:
        """
        Send a message to the configured chat.

        Returns:
            True if Telegram accepted the message
        """
        try:
            resp = httpx.post(
                self.url,
                data={
                    "chat_id": self.chat_id,
                    "text": message[:MAX_MESSAGE_LENGTH],
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return True
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Telegram alert rejected (HTTP %d): %s",
                exc.response.status_code, exc.response.text[:200],
            )
        except httpx.HTTPError as exc:
            # str(exc) may contain the request URL, which embeds the token
            logger.error("Failed to send Telegram alert: %s", type(exc).__name__)
        return False


def create_alert_sink(credentials: Optional[TelegramCredentials], timeout: float = REQUEST_TIMEOUT_SEC):
    """Return a TelegramAlertSink, or a NullAlertSink when credentials are absent."""
    if credentials is None:
        return NullAlertSink()
    return TelegramAlertSink(credentials.token, credentials.chat_id, timeout=timeout)

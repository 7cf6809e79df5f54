"""Concrete HTTP providers for the supported channels."""
import base64
import hashlib
import hmac
import time
from typing import Any, Dict, Optional

from notifier.errors import NotificationError
from notifier.providers.base_provider import HttpChannelProvider
from notifier.schemas.channel_config import (
    LarkChannelConfig,
    SlackChannelConfig,
    TelegramChannelConfig,
    WebhookChannelConfig,
)
from notifier.utils.time import utcnow


class WebhookProvider(HttpChannelProvider):
    """Generic JSON webhook provider."""

    channel_type = "webhook"

    async def send(self, config: WebhookChannelConfig, content: str, subject: Optional[str] = None) -> Dict[str, Any]:
        payload = {
            "content": content,
            "subject": subject,
            "timestamp": utcnow().isoformat(),
            "metadata": {"channel": "webhook", "version": "1.0"},
        }
        # Header values must not smuggle extra lines into the request
        headers = {
            key.strip(): value.replace("\r", "").replace("\n", "")
            for key, value in config.headers.items()
        }
        response = await self._post_json(config.webhook_url, payload, headers=headers, method=config.method)
        return {"status_code": response.status_code, "response": self._response_body(response)}


class SlackProvider(HttpChannelProvider):
    """Slack incoming-webhook provider."""

    channel_type = "slack"

    async def send(self, config: SlackChannelConfig, content: str, subject: Optional[str] = None) -> Dict[str, Any]:
        text = f"*{subject}*\n{content}" if subject else content
        payload: Dict[str, Any] = {"text": text}
        if config.username:
            payload["username"] = config.username
        if config.channel:
            payload["channel"] = config.channel
        response = await self._post_json(config.webhook_url, payload)
        return {"status_code": response.status_code, "response": self._response_body(response)}


class LarkProvider(HttpChannelProvider):
    """Lark custom bot provider, with optional signed requests."""

    channel_type = "lark"

    @staticmethod
    def _sign(secret: str, timestamp: int) -> str:
        string_to_sign = f"{timestamp}\n{secret}".encode("utf-8")
        digest = hmac.new(string_to_sign, b"", digestmod=hashlib.sha256).digest()
        return base64.b64encode(digest).decode("utf-8")

    async def send(self, config: LarkChannelConfig, content: str, subject: Optional[str] = None) -> Dict[str, Any]:
        text = f"{subject}\n{content}" if subject else content
        payload: Dict[str, Any] = {"msg_type": "text", "content": {"text": text}}
        if config.secret:
            timestamp = int(time.time())
            payload["timestamp"] = str(timestamp)
            payload["sign"] = self._sign(config.secret, timestamp)
        response = await self._post_json(config.webhook_url, payload)
        body = self._response_body(response)
        # Lark reports logical failures with HTTP 200 and a non-zero code
        if isinstance(body, dict) and body.get("code", 0) not in (0, None):
            raise NotificationError(f"Lark error {body.get('code')}: {body.get('msg')}", "LARK_ERROR", retryable=False)
        return {"status_code": response.status_code, "response": body}


class TelegramProvider(HttpChannelProvider):
    """Telegram Bot API provider."""

    channel_type = "telegram"
    api_base = "https://api.telegram.org"

    async def send(self, config: TelegramChannelConfig, content: str, subject: Optional[str] = None) -> Dict[str, Any]:
        text = f"{subject}\n\n{content}" if subject else content
        payload: Dict[str, Any] = {"chat_id": config.chat_id, "text": text}
        if config.parse_mode:
            payload["parse_mode"] = config.parse_mode
        response = await self._post_json(f"{self.api_base}/bot{config.bot_token}/sendMessage", payload)
        return {"status_code": response.status_code, "response": self._response_body(response)}

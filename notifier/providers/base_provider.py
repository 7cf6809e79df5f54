"""
Base Notification Provider.

Abstract base class for channel providers, plus an httpx-backed base that
classifies HTTP failures as retryable or permanent.
"""

import abc
from typing import Any, Dict, Optional

import httpx

from notifier.errors import NotificationError
from notifier.utils.logger import get_logger

logger = get_logger(__name__)


class ChannelProvider(abc.ABC):
    """Abstract base class for channel providers."""

    channel_type: str = ""

    @abc.abstractmethod
    async def send(self, config: Any, content: str, subject: Optional[str] = None) -> Dict[str, Any]:
        """
        Send a notification.

        Args:
            config: Typed channel config for this provider
            content: Rendered message content
            subject: Optional rendered subject

        Returns:
            Dict with provider-specific send details

        Raises:
            NotificationError: classified as retryable or permanent
        """


class HttpChannelProvider(ChannelProvider):
    """Provider that delivers by sending JSON over HTTP."""

    user_agent = "Notification-System/1.0"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.client = client
        self.timeout = timeout

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        method: str = "POST",
    ) -> httpx.Response:
        request_headers = {"Content-Type": "application/json", "User-Agent": self.user_agent}
        request_headers.update(headers or {})
        try:
            if self.client is not None:
                response = await self.client.request(method, url, json=payload, headers=request_headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, json=payload, headers=request_headers)
        except httpx.TimeoutException as e:
            raise NotificationError("Request timeout", "TIMEOUT_ERROR", retryable=True) from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Network error: {e}", "NETWORK_ERROR", retryable=True) from e

        if response.is_error:
            raise NotificationError(
                f"HTTP {response.status_code}: {response.text[:500]}",
                "HTTP_ERROR",
                retryable=response.status_code >= 500 or response.status_code == 429,
            )
        return response

    @staticmethod
    def _response_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

"""Channel type to provider lookup."""
from typing import Dict, Iterable, Optional

import httpx

from notifier.errors import NotificationError
from notifier.providers.base_provider import ChannelProvider
from notifier.providers.channel_providers import LarkProvider, SlackProvider, TelegramProvider, WebhookProvider


class ProviderRegistry:
    """Holds one provider instance per channel type."""

    def __init__(self, providers: Optional[Iterable[ChannelProvider]] = None):
        self._providers: Dict[str, ChannelProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: ChannelProvider, channel_type: Optional[str] = None):
        self._providers[channel_type or provider.channel_type] = provider

    def get(self, channel_type: str) -> ChannelProvider:
        """Return the provider for ``channel_type``.

        Raises:
            NotificationError: no provider is registered (permanent)
        """
        provider = self._providers.get(channel_type)
        if provider is None:
            raise NotificationError(f"Unsupported channel type: {channel_type}", "UNSUPPORTED_CHANNEL", retryable=False)
        return provider

    @property
    def channel_types(self):
        return list(self._providers)


def default_registry(client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0) -> ProviderRegistry:
    """Registry with the built-in HTTP providers sharing one httpx client."""
    return ProviderRegistry([
        WebhookProvider(client, timeout),
        SlackProvider(client, timeout),
        LarkProvider(client, timeout),
        TelegramProvider(client, timeout),
    ])

"""Tests for channel config parsing and request validation."""

import pytest

from notifier.errors import ConfigurationError, ValidationError
from notifier.schemas.channel_config import (
    LarkChannelConfig,
    TelegramChannelConfig,
    WebhookChannelConfig,
    parse_channel_config,
)
from notifier.schemas.notification import parse_send_request


def test_parse_channel_config_returns_typed_variant():
    webhook = parse_channel_config("webhook", {"webhook_url": "https://example.com/hook", "method": "PUT"})
    assert isinstance(webhook, WebhookChannelConfig)
    assert webhook.method == "PUT"

    telegram = parse_channel_config("telegram", {"bot_token": "1:abc", "chat_id": 42})
    assert isinstance(telegram, TelegramChannelConfig)

    lark = parse_channel_config("lark", {"webhook_url": "https://open.larksuite.com/hook", "secret": "s"})
    assert isinstance(lark, LarkChannelConfig)


def test_stored_channel_type_is_ignored_in_favour_of_the_row():
    config = parse_channel_config("webhook", {"channel_type": "slack", "webhook_url": "https://example.com"})
    assert config.channel_type == "webhook"


def test_invalid_config_is_a_permanent_error():
    with pytest.raises(ConfigurationError) as exc_info:
        parse_channel_config("webhook", {"webhook_url": "not a url"})
    assert exc_info.value.code == "INVALID_CONFIG"
    assert not exc_info.value.retryable
    assert "webhook_url" in exc_info.value.message

    with pytest.raises(ConfigurationError) as exc_info:
        parse_channel_config("telegram", {"bot_token": "1:abc"})
    assert "chat_id" in exc_info.value.message


def test_unsupported_channel():
    with pytest.raises(ConfigurationError) as exc_info:
        parse_channel_config("email", {})
    assert exc_info.value.code == "UNSUPPORTED_CHANNEL"


def test_parse_send_request():
    request = parse_send_request({
        "user_id": "  user\x07-1 ",
        "channels": ["slack", "webhook", "slack"],
        "template_key": "order.shipped",
        "variables": {"id": 1},
    })
    assert request.user_id == "user-1"
    assert [c.value for c in request.unique_channels()] == ["slack", "webhook"]


@pytest.mark.parametrize("payload", [
    {"user_id": "u1", "channels": ["webhook"]},
    {"user_id": "u1", "channels": [], "custom_content": {"content": "x"}},
    {"user_id": "u1", "channels": ["email"], "custom_content": {"content": "x"}},
    {"user_id": "u1", "channels": ["webhook"], "template_key": "bad key"},
    {"user_id": "\x00", "channels": ["webhook"], "custom_content": {"content": "x"}},
])
def test_parse_send_request_rejects_invalid_payloads(payload):
    with pytest.raises(ValidationError) as exc_info:
        parse_send_request(payload)
    assert exc_info.value.code == "INVALID_REQUEST"
    assert not exc_info.value.retryable

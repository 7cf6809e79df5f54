"""Tests for the HTTP channel providers."""

import json

import httpx
import pytest

from notifier.errors import NotificationError
from notifier.providers.channel_providers import LarkProvider, SlackProvider, TelegramProvider, WebhookProvider
from notifier.providers.registry import default_registry
from notifier.schemas.channel_config import parse_channel_config


def _client(handler, requests):
    def recording_handler(request):
        requests.append(request)
        return handler(request)
    return httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))


async def test_webhook_posts_json_with_sanitized_headers():
    requests = []
    client = _client(lambda request: httpx.Response(200, json={"ok": True}), requests)
    config = parse_channel_config("webhook", {
        "webhook_url": "https://hooks.example.com/notify",
        "headers": {"X-Token": "abc\r\nInjected: yes"},
    })

    result = await WebhookProvider(client).send(config, "Hello", "Greeting")

    assert result == {"status_code": 200, "response": {"ok": True}}
    request = requests[0]
    assert request.method == "POST"
    assert request.headers["X-Token"] == "abcInjected: yes"
    body = json.loads(request.content)
    assert body["content"] == "Hello"
    assert body["subject"] == "Greeting"
    await client.aclose()


@pytest.mark.parametrize("status_code, retryable", [(503, True), (429, True), (400, False), (404, False)])
async def test_http_errors_are_classified(status_code, retryable):
    client = _client(lambda request: httpx.Response(status_code, text="nope"), [])
    config = parse_channel_config("slack", {"webhook_url": "https://hooks.slack.com/x"})

    with pytest.raises(NotificationError) as exc_info:
        await SlackProvider(client).send(config, "Hello")

    assert exc_info.value.code == "HTTP_ERROR"
    assert exc_info.value.retryable is retryable
    await client.aclose()


async def test_timeout_and_network_errors_are_retryable():
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    def refused(request):
        raise httpx.ConnectError("connection refused", request=request)

    config = parse_channel_config("webhook", {"webhook_url": "https://hooks.example.com/notify"})
    for handler, code in ((timeout, "TIMEOUT_ERROR"), (refused, "NETWORK_ERROR")):
        client = _client(handler, [])
        with pytest.raises(NotificationError) as exc_info:
            await WebhookProvider(client).send(config, "Hello")
        assert exc_info.value.code == code
        assert exc_info.value.retryable
        await client.aclose()


async def test_slack_formats_subject():
    requests = []
    client = _client(lambda request: httpx.Response(200, text="ok"), requests)
    config = parse_channel_config("slack", {"webhook_url": "https://hooks.slack.com/x", "username": "bot"})

    result = await SlackProvider(client).send(config, "Body", "Title")

    assert json.loads(requests[0].content) == {"text": "*Title*\nBody", "username": "bot"}
    assert result["response"] == "ok"
    await client.aclose()


async def test_lark_signs_requests_and_rejects_error_codes():
    requests = []
    client = _client(lambda request: httpx.Response(200, json={"code": 19021, "msg": "sign match fail"}), requests)
    config = parse_channel_config("lark", {"webhook_url": "https://open.larksuite.com/hook", "secret": "s3cret"})

    with pytest.raises(NotificationError) as exc_info:
        await LarkProvider(client).send(config, "Body")

    assert exc_info.value.code == "LARK_ERROR"
    assert not exc_info.value.retryable
    body = json.loads(requests[0].content)
    assert body["msg_type"] == "text"
    assert body["sign"] == LarkProvider._sign("s3cret", int(body["timestamp"]))
    await client.aclose()


async def test_telegram_calls_bot_api():
    requests = []
    client = _client(lambda request: httpx.Response(200, json={"ok": True}), requests)
    config = parse_channel_config("telegram", {"bot_token": "123:abc", "chat_id": "42", "parse_mode": "HTML"})

    await TelegramProvider(client).send(config, "Body", "Title")

    request = requests[0]
    assert str(request.url) == "https://api.telegram.org/bot123:abc/sendMessage"
    assert json.loads(request.content) == {"chat_id": "42", "text": "Title\n\nBody", "parse_mode": "HTML"}
    await client.aclose()


def test_registry_rejects_unknown_channel():
    registry = default_registry()

    assert sorted(registry.channel_types) == ["lark", "slack", "telegram", "webhook"]
    with pytest.raises(NotificationError) as exc_info:
        registry.get("email")
    assert exc_info.value.code == "UNSUPPORTED_CHANNEL"
    assert not exc_info.value.retryable

"""Typed channel configuration, discriminated by channel type."""
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import AfterValidator, BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from notifier.errors import ConfigurationError


class ChannelType(str, Enum):
    WEBHOOK = "webhook"
    TELEGRAM = "telegram"
    LARK = "lark"
    SLACK = "slack"


SUPPORTED_CHANNELS = [channel.value for channel in ChannelType]


def _require_http_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("must be an http(s) URL")
    return value


HttpUrlStr = Annotated[str, AfterValidator(_require_http_url)]


class WebhookChannelConfig(BaseModel):
    """Generic JSON webhook."""
    channel_type: Literal["webhook"] = "webhook"
    webhook_url: HttpUrlStr
    method: str = Field(default="POST", pattern=r"^(POST|PUT)$")
    headers: Dict[str, str] = Field(default_factory=dict)


class SlackChannelConfig(BaseModel):
    """Slack incoming webhook."""
    channel_type: Literal["slack"] = "slack"
    webhook_url: HttpUrlStr
    username: Optional[str] = None
    channel: Optional[str] = None


class LarkChannelConfig(BaseModel):
    """Lark (Feishu) custom bot webhook."""
    channel_type: Literal["lark"] = "lark"
    webhook_url: HttpUrlStr
    secret: Optional[str] = None


class TelegramChannelConfig(BaseModel):
    """Telegram bot API target."""
    channel_type: Literal["telegram"] = "telegram"
    bot_token: str = Field(..., min_length=1)
    chat_id: Union[str, int]
    parse_mode: Optional[str] = None


ChannelConfig = Annotated[
    Union[WebhookChannelConfig, SlackChannelConfig, LarkChannelConfig, TelegramChannelConfig],
    Field(discriminator="channel_type"),
]

_channel_config_adapter = TypeAdapter(ChannelConfig)


def parse_channel_config(channel_type: str, config_data: Dict[str, Any]) -> ChannelConfig:
    """Validate a stored config blob against the schema of its channel.

    Raises:
        ConfigurationError: the blob is not a valid config for the channel
    """
    if channel_type not in SUPPORTED_CHANNELS:
        raise ConfigurationError(f"Unsupported channel type: {channel_type}", "UNSUPPORTED_CHANNEL")
    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Invalid configuration for {channel_type} channel")
    try:
        return _channel_config_adapter.validate_python({**config_data, "channel_type": channel_type})
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(part) for part in err["loc"][1:]) or "config" for err in e.errors())
        raise ConfigurationError(f"Invalid configuration for {channel_type} channel: {fields}") from e

"""Notification request, result and queue message schemas."""
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from notifier.errors import ValidationError
from notifier.schemas.channel_config import ChannelType

TEMPLATE_KEY_PATTERN = r"^[a-zA-Z0-9_.-]{1,100}$"
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


class ResultStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    RETRY = "retry"
    RETRY_SCHEDULED = "retry_scheduled"


class CustomContent(BaseModel):
    """Raw content supplied instead of a template."""
    subject: Optional[str] = Field(None, max_length=1000)
    content: str = Field(..., min_length=1)


class SendNotificationRequest(BaseModel):
    """Request to notify one user through one or more channels."""
    user_id: str = Field(..., min_length=1, max_length=100)
    channels: List[ChannelType] = Field(..., min_length=1)
    template_key: Optional[str] = Field(None, pattern=TEMPLATE_KEY_PATTERN)
    variables: Optional[Dict[str, Any]] = None
    custom_content: Optional[CustomContent] = None
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=255)
    metadata: Optional[Dict[str, Any]] = None  # caller tracking info, not interpreted

    @field_validator("user_id")
    @classmethod
    def sanitize_user_id(cls, value: str) -> str:
        cleaned = CONTROL_CHARS.sub("", value).strip()
        if not cleaned:
            raise ValueError("user_id cannot be empty after sanitization")
        return cleaned

    @model_validator(mode="after")
    def require_content_source(self) -> "SendNotificationRequest":
        if not self.template_key and self.custom_content is None:
            raise ValueError("Either template_key or custom_content must be provided")
        return self

    def unique_channels(self) -> List[ChannelType]:
        """Requested channels without repeats, in request order."""
        return list(dict.fromkeys(self.channels))


def parse_send_request(payload: Dict[str, Any]) -> SendNotificationRequest:
    """Validate a raw request body.

    Raises:
        ValidationError: the body does not describe a valid request
    """
    try:
        return SendNotificationRequest.model_validate(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "request"
        raise ValidationError(f"{location}: {first['msg']}", "INVALID_REQUEST") from e


class NotificationResult(BaseModel):
    """Outcome of one channel attempt, as reported to the caller."""
    message_id: str
    user_id: str
    channel_type: ChannelType
    status: ResultStatus
    error: Optional[str] = None
    log_id: Optional[int] = None
    details: Optional[Any] = None


class PreparedNotification(BaseModel):
    """A rendered message bound to the config of one channel."""
    user_id: str
    channel_type: ChannelType
    config: Dict[str, Any]
    content: str
    subject: Optional[str] = None
    template_key: Optional[str] = None


class UserChannelConfig(BaseModel):
    """Parsed user config row, as held in the config cache."""
    id: Optional[int] = None
    user_id: str
    channel_type: str
    config_data: Dict[str, Any]
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RetryMessage(BaseModel):
    """Delayed retry payload carried by the retry queue."""
    log_id: int
    retry_count: int = Field(..., ge=0)
    type: Literal["retry_notification"] = "retry_notification"
    scheduled_at: int  # epoch milliseconds
    expected_process_at: int


class DuplicateCheckResult(BaseModel):
    is_duplicate: bool
    results: Optional[List[NotificationResult]] = None


class CleanupResult(BaseModel):
    timestamp: datetime
    cleaned_logs: int = 0
    cleaned_keys: int = 0
    duration_ms: int = 0
    errors: List[str] = []

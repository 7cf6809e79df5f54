"""Notification attempt audit model for SQLModel."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel

from notifier.utils.time import utcnow


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    RETRY = "retry"
    FAILED = "failed"


# States a row may still leave; sent and failed are terminal
OPEN_STATUSES = (NotificationStatus.PENDING.value, NotificationStatus.RETRY.value)


class NotificationLog(SQLModel, table=True):
    """One (notification, channel) attempt, mutated in place across retries."""

    __tablename__ = "notification_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    message_id: str = Field(max_length=64, unique=True, index=True)
    user_id: str = Field(max_length=100, index=True)
    channel_type: str = Field(max_length=20)
    template_key: Optional[str] = Field(default=None, max_length=100)
    subject: Optional[str] = Field(default=None, sa_column=Column(Text))
    content: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(default=NotificationStatus.PENDING.value, max_length=20, index=True)
    retry_count: int = Field(default=0)
    error: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False, index=True))
    sent_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))

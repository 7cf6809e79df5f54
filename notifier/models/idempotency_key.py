"""Idempotency key model for SQLModel."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from notifier.utils.time import utcnow


class IdempotencyKey(SQLModel, table=True):
    """Message ids produced by the first request carrying a key, per user."""

    __tablename__ = "idempotency_keys"

    idempotency_key: str = Field(primary_key=True, max_length=255)
    user_id: str = Field(primary_key=True, max_length=100)
    # None while the owning request is still dispatching
    message_ids: Optional[List[str]] = Field(default=None, sa_column=Column(JSON(none_as_null=True)))
    expires_at: datetime = Field(sa_column=Column(DateTime, nullable=False, index=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))

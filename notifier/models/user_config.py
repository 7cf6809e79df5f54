"""Per-user channel configuration model for SQLModel."""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from notifier.utils.time import utcnow


class UserConfig(SQLModel, table=True):
    """Channel configuration owned by one user, one row per channel type."""

    __tablename__ = "user_configs"
    __table_args__ = (UniqueConstraint("user_id", "channel_type", name="user_channel_unique"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(max_length=100, index=True)
    channel_type: str = Field(max_length=20)  # webhook, telegram, lark, slack
    config_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))

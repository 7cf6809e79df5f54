"""System-wide key/value settings model for SQLModel."""
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel

from notifier.utils.time import utcnow


class SystemConfig(SQLModel, table=True):
    __tablename__ = "system_configs"

    config_key: str = Field(primary_key=True, max_length=100)
    config_value: str = Field(sa_column=Column(Text, nullable=False))
    description: Optional[str] = Field(default=None, max_length=500)
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))

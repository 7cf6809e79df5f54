"""Notification template models for SQLModel."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from notifier.utils.time import utcnow


class NotificationTemplate(SQLModel, table=True):
    """A named, variable-parameterized message definition."""

    __tablename__ = "notification_templates"

    template_key: str = Field(primary_key=True, max_length=100)
    template_name: str = Field(max_length=200, index=True)
    description: Optional[str] = Field(default=None, max_length=1000)
    variables: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))  # declared variable names
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))


class TemplateContent(SQLModel, table=True):
    """Channel-specific content variant of a template."""

    __tablename__ = "template_contents"
    __table_args__ = (UniqueConstraint("template_key", "channel_type", name="template_channel_unique"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    template_key: str = Field(foreign_key="notification_templates.template_key", index=True)
    channel_type: str = Field(max_length=20)
    content_type: str = Field(default="text", max_length=20)  # text, html, markdown, structured
    subject_template: Optional[str] = Field(default=None, sa_column=Column(Text))
    content_template: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))

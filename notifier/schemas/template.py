"""Template rendering schemas."""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class ContentType(str, Enum):
    TEXT = "text"
    HTML = "html"
    MARKDOWN = "markdown"
    STRUCTURED = "structured"


class TemplateContentData(BaseModel):
    """Cached form of a template content row."""
    channel_type: str
    subject_template: Optional[str] = None
    content_template: str
    content_type: str = ContentType.TEXT.value

    class Config:
        from_attributes = True


class RenderedTemplate(BaseModel):
    subject: Optional[str] = None
    content: str
    content_type: str = ContentType.TEXT.value


class TemplateValidation(BaseModel):
    valid: bool
    errors: List[str] = []

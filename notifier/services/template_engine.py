"""
Template Engine.

Resolves (template key, channel) to rendered subject/content. Placeholders
use ``{{name}}`` syntax; placeholders without a value are left verbatim so a
partially filled message still goes out with the gap visible.
"""

import html
import json
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from notifier.errors import ValidationError
from notifier.models.template import NotificationTemplate, TemplateContent
from notifier.schemas.channel_config import SUPPORTED_CHANNELS
from notifier.schemas.notification import TEMPLATE_KEY_PATTERN
from notifier.schemas.template import RenderedTemplate, TemplateContentData, TemplateValidation
from notifier.utils.logger import get_logger

logger = get_logger(__name__)

PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")
VARIABLE_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
MAX_VALUE_LENGTH = 5000


def validate_template_key(template_key: str):
    if not isinstance(template_key, str) or not re.match(TEMPLATE_KEY_PATTERN, template_key):
        raise ValidationError(
            "Template key must be 1-100 alphanumeric characters, hyphens, underscores or dots",
            "INVALID_TEMPLATE_KEY",
        )


def validate_channel(channel: str):
    if channel not in SUPPORTED_CHANNELS:
        raise ValidationError(
            f"Invalid channel: {channel}. Valid channels are: {', '.join(SUPPORTED_CHANNELS)}",
            "INVALID_CHANNEL_TYPE",
        )


def sanitize_value(value: Any) -> str:
    """Make a variable value safe to splice into rendered content.

    None becomes empty, containers become JSON, control characters are
    stripped, the result is trimmed, capped and HTML-escaped.
    """
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        text = json.dumps(value, ensure_ascii=False, sort_keys=True)
    else:
        text = str(value)
    text = CONTROL_CHARS.sub("", text.strip())[:MAX_VALUE_LENGTH]
    return html.escape(text, quote=True)


def replace_variables(template: str, variables: Mapping[str, Any]) -> str:
    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        return sanitize_value(variables[name])

    return PLACEHOLDER.sub(substitute, template)


def extract_variables(template: str) -> List[str]:
    """Placeholder names in order of first appearance."""
    return list(dict.fromkeys(PLACEHOLDER.findall(template or "")))


def render(content: TemplateContentData, variables: Mapping[str, Any]) -> RenderedTemplate:
    subject = replace_variables(content.subject_template, variables) if content.subject_template else None
    return RenderedTemplate(
        subject=subject,
        content=replace_variables(content.content_template, variables),
        content_type=content.content_type or "text",
    )


class TemplateEngine:
    """Renders active templates, with a TTL cache in front of the store."""

    def __init__(self, engine: Engine, cache: Any, ttl: int = 300):
        self.engine = engine
        self.cache = cache
        self.ttl = ttl

    @staticmethod
    def _cache_key(template_key: str) -> str:
        return f"template:{template_key}"

    def _load_contents(self, template_key: str) -> List[TemplateContentData]:
        statement = (
            select(TemplateContent)
            .join(NotificationTemplate, TemplateContent.template_key == NotificationTemplate.template_key)
            .where(NotificationTemplate.template_key == template_key, NotificationTemplate.is_active == True)  # noqa: E712
        )
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
            return [TemplateContentData.model_validate(row) for row in rows]

    async def get_template_contents(self, template_key: str) -> Dict[str, TemplateContentData]:
        """All channel contents of an active template, keyed by channel type."""
        cache_key = self._cache_key(template_key)
        try:
            cached = await self.cache.get(cache_key)
        except Exception as e:
            logger.warning("Template cache read failed", template_key=template_key, error=str(e))
            cached = None

        if cached:
            contents = [TemplateContentData.model_validate(item) for item in cached]
        else:
            contents = self._load_contents(template_key)
            if contents:
                try:
                    await self.cache.set(cache_key, [c.model_dump() for c in contents], ttl=self.ttl)
                except Exception as e:
                    logger.error("Failed to cache template contents", template_key=template_key, error=str(e))
            else:
                logger.warning("Template not found or has no contents", template_key=template_key)

        return {content.channel_type: content for content in contents}

    async def render_template(
        self,
        template_key: str,
        channel: str,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> Optional[RenderedTemplate]:
        """Render one channel. Returns None when the template has no content for it."""
        validate_template_key(template_key)
        validate_channel(channel)
        contents = await self.get_template_contents(template_key)
        content = contents.get(channel)
        if content is None:
            return None
        return render(content, variables or {})

    async def render_for_channels(
        self,
        template_key: str,
        channels: Sequence[str],
        variables: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, RenderedTemplate]:
        """Render several channels from a single template lookup.

        Channels without a content row are absent from the result.
        """
        validate_template_key(template_key)
        for channel in channels:
            validate_channel(channel)

        contents = await self.get_template_contents(template_key)
        results: Dict[str, RenderedTemplate] = {}
        for channel in channels:
            content = contents.get(channel)
            if content is None:
                continue
            results[channel] = render(content, variables or {})

        logger.info(
            "Rendered template for channels",
            template_key=template_key,
            requested_channels=list(channels),
            rendered_channels=list(results),
        )
        return results

    async def invalidate_template(self, template_key: str):
        try:
            await self.cache.delete(self._cache_key(template_key))
        except Exception as e:
            logger.error("Failed to invalidate template cache", template_key=template_key, error=str(e))

    async def validate_template(self, template_key: str, channel: str) -> TemplateValidation:
        """Check that a template exists for the channel and uses valid variable names."""
        validate_template_key(template_key)
        validate_channel(channel)
        content = (await self.get_template_contents(template_key)).get(channel)
        if content is None:
            return TemplateValidation(valid=False, errors=[f"Template not found for {template_key}/{channel}"])

        names = extract_variables(content.content_template) + extract_variables(content.subject_template or "")
        errors = [f"Invalid variable name: {name}" for name in dict.fromkeys(names) if not VARIABLE_NAME.match(name)]
        return TemplateValidation(valid=not errors, errors=errors)

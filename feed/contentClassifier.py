"""
Structural classification of untyped content documents.

Stored documents carry no type tag, so a blob whose source is not known is
classified by its fields. The precedence is fixed: poll, then story, then
post. A document with both poll and story fields is a poll.
"""
from collections.abc import Mapping
from typing import Optional

from feed.types import ContentType

# Author identity lives in one of two shapes, checked in this order
OWNER_FIELD = 'userId'
EMBEDDED_AUTHOR_FIELD = 'author'
EMBEDDED_AUTHOR_ID_FIELD = 'clerkId'


def _has(content, field: str) -> bool:
    return isinstance(content, Mapping) and content.get(field) is not None


def is_poll(content) -> bool:
    return _has(content, 'question') and _has(content, 'options')


def is_story(content) -> bool:
    return _has(content, 'title') and _has(content, 'status') and not _has(content, 'question')


def is_post(content) -> bool:
    if is_poll(content) or is_story(content):
        return False
    return _has(content, 'media') or _has(content, 'text')


def classify_content(content) -> Optional[ContentType]:
    """Return the content type of a document, or None if it matches no shape"""
    if is_poll(content):
        return ContentType.POLL
    if is_story(content):
        return ContentType.STORY
    if is_post(content):
        return ContentType.POST
    return None


def get_content_author_id(content) -> str:
    """
    Resolve a document's author id

    The top-level owner field wins; older documents only have the embedded
    author snapshot. Returns an empty string when neither is present.
    """
    if not isinstance(content, Mapping):
        return ''

    owner = content.get(OWNER_FIELD)
    if isinstance(owner, str) and owner:
        return owner

    author = content.get(EMBEDDED_AUTHOR_FIELD)
    if isinstance(author, Mapping):
        embedded_id = author.get(EMBEDDED_AUTHOR_ID_FIELD)
        if isinstance(embedded_id, str):
            return embedded_id

    return ''


def coerce_count(value) -> int:
    """Engagement counters: None, negative or non-numeric values become 0"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))

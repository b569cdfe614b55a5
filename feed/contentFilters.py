"""
Post-fetch filters applied to feed candidates before scoring.
"""
import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import List

from feed.config import CLOSED_POLL_STATUSES, EXPIRED_STORY_STATUSES
from feed.timeUtils import parse_timestamp
from feed.types import ContentFilters, ContentType, RawContentItem

logger = logging.getLogger(__name__)


def _content_status(item: RawContentItem) -> str:
    content = item.content
    if isinstance(content, Mapping):
        return str(content.get('status') or '')
    return ''


def _has_expired(item: RawContentItem, now: datetime) -> bool:
    content = item.content
    if not isinstance(content, Mapping):
        return False
    expires_at = parse_timestamp(content.get('expiresAt'))
    return expires_at is not None and expires_at <= now


def is_closed_poll(item: RawContentItem, now: datetime) -> bool:
    """A poll is closed when its status says so or its expiry has passed"""
    if item.type != ContentType.POLL:
        return False
    return _content_status(item) in CLOSED_POLL_STATUSES or _has_expired(item, now)


def is_expired_story(item: RawContentItem, now: datetime) -> bool:
    if item.type != ContentType.STORY:
        return False
    return _content_status(item) in EXPIRED_STORY_STATUSES or _has_expired(item, now)


def filter_old_items(items: List[RawContentItem], max_age_days: float, now: datetime) -> List[RawContentItem]:
    cutoff = now - timedelta(days=max_age_days)
    filtered_items = [item for item in items if item.created_at >= cutoff]

    removed = len(items) - len(filtered_items)
    if removed > 0:
        logger.info(f"Filtered {removed} items older than {max_age_days} days")
    return filtered_items


def filter_low_engagement_items(items: List[RawContentItem], min_engagement: int) -> List[RawContentItem]:
    filtered_items = [item for item in items if item.total_engagement >= min_engagement]

    removed = len(items) - len(filtered_items)
    if removed > 0:
        logger.info(f"Filtered {removed} low-engagement items (< {min_engagement})")
    return filtered_items


def apply_content_filters(items: List[RawContentItem], filters: ContentFilters, now: datetime) -> List[RawContentItem]:
    """
    Prune candidates according to the request's content filters

    Args:
        items: Candidates merged from every active source
        filters: Filters from the query options
        now: Request time, used for age and expiry checks

    Returns:
        Surviving candidates in their original order
    """
    if filters.exclude_closed_polls:
        before = len(items)
        items = [item for item in items if not is_closed_poll(item, now)]
        if len(items) < before:
            logger.info(f"Filtered {before - len(items)} closed polls")

    if filters.exclude_expired_stories:
        before = len(items)
        items = [item for item in items if not is_expired_story(item, now)]
        if len(items) < before:
            logger.info(f"Filtered {before - len(items)} expired stories")

    if filters.max_age_days is not None:
        items = filter_old_items(items, filters.max_age_days, now)

    if filters.min_engagement is not None:
        items = filter_low_engagement_items(items, filters.min_engagement)

    return items

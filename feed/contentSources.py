"""
Content sources: one adapter per content type over its document store.

A store is any object exposing three coroutines:

    find_recent(query: ContentQuery, limit: int) -> list[dict]   newest first
    count(query: ContentQuery) -> int
    find_by_id(content_id: str) -> dict | None

Sources turn the store's documents into RawContentItems and wrap store
failures in SourceUnavailable so the aggregator can apply its failure policy.
"""
import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from feed.config import PUBLISHED_STORY_STATUS
from feed.contentClassifier import coerce_count, get_content_author_id
from feed.errors import SourceUnavailable
from feed.timeUtils import parse_timestamp
from feed.types import ContentType, CursorPosition, RawContentItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentQuery:
    """Storage-agnostic document filter understood by every content store"""

    author_ids: Optional[FrozenSet[str]] = None
    exclude_author_ids: Optional[FrozenSet[str]] = None
    before: Optional[CursorPosition] = None
    after: Optional[CursorPosition] = None
    statuses: Optional[FrozenSet[str]] = None
    excluded_statuses: FrozenSet[str] = frozenset()
    active_at: Optional[datetime] = None

    def merge(self, **changes) -> 'ContentQuery':
        return replace(self, **changes)


class ContentSource:
    """Base adapter. Subclasses set content_type and may add base constraints."""

    content_type: ContentType = None

    def __init__(self, store):
        self.store = store

    @property
    def name(self) -> str:
        return self.content_type.value

    def base_query(self, query: ContentQuery) -> ContentQuery:
        """Constraints that always apply to this source"""
        return query

    async def fetch(self, query: ContentQuery, limit: int) -> List[RawContentItem]:
        try:
            documents = list(await self.store.find_recent(self.base_query(query), limit))
        except Exception as e:
            logger.error(f"Failed to fetch {self.name} content: {e}")
            raise SourceUnavailable(self.name, str(e), cause=e) from e

        items = []
        for document in documents:
            item = self.to_raw_item(document)
            if item is not None:
                items.append(item)
        logger.debug(f"Fetched {len(items)} {self.name} items (limit {limit})")
        return items

    async def count(self, query: ContentQuery) -> int:
        try:
            return int(await self.store.count(self.base_query(query)))
        except Exception as e:
            logger.error(f"Failed to count {self.name} content: {e}")
            raise SourceUnavailable(self.name, str(e), cause=e) from e

    async def get(self, content_id: str) -> Optional[RawContentItem]:
        try:
            document = await self.store.find_by_id(content_id)
        except Exception as e:
            logger.error(f"Failed to look up {self.name} {content_id}: {e}")
            raise SourceUnavailable(self.name, str(e), cause=e) from e
        if document is None:
            return None
        return self.to_raw_item(document)

    def to_raw_item(self, document: Dict) -> Optional[RawContentItem]:
        if not isinstance(document, Mapping):
            logger.warning(f"Skipping malformed {self.name} document of type {type(document).__name__}")
            return None

        created_at = parse_timestamp(document.get('createdAt'))
        content_id = document.get('_id')
        if created_at is None or content_id is None:
            logger.warning(f"Skipping {self.name} document without id or createdAt: {content_id!r}")
            return None

        return RawContentItem(
            id=str(content_id),
            type=self.content_type,
            content=document,
            created_at=created_at,
            author_id=get_content_author_id(document),
            reactions_count=coerce_count(document.get('reactionsCount')),
            comments_count=coerce_count(document.get('commentsCount')),
            total_votes=self.total_votes(document),
        )

    def total_votes(self, document: Dict) -> int:
        return 0


class PostSource(ContentSource):
    content_type = ContentType.POST


class PollSource(ContentSource):
    content_type = ContentType.POLL

    def total_votes(self, document: Dict) -> int:
        return coerce_count(document.get('totalVotes'))


class StorySource(ContentSource):
    """Stories only reach a feed once published."""

    content_type = ContentType.STORY

    def base_query(self, query: ContentQuery) -> ContentQuery:
        return query.merge(statuses=frozenset({PUBLISHED_STORY_STATUS}))


def build_sources(post_store, poll_store, story_store) -> Dict[ContentType, ContentSource]:
    """Wire one source per content type"""
    return {
        ContentType.POST: PostSource(post_store),
        ContentType.POLL: PollSource(poll_store),
        ContentType.STORY: StorySource(story_store),
    }

"""
Count-only query behind the "new posts" banner.

Answers how many qualifying items are newer than the client's last-seen
marker. Uses store counts only; nothing is fetched, scored or sorted.
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from feed.config import CLOSED_POLL_STATUSES, EXPIRED_STORY_STATUSES, SOURCE_TIMEOUT_SECONDS
from feed.contentSources import ContentQuery, ContentSource
from feed.cursorCodec import decode_cursor, is_cursor_token
from feed.errors import InvalidQuery, SourceUnavailable
from feed.timeUtils import utc_now
from feed.types import (
    TAB_CONTENT_TYPES, ContentFilters, ContentTab, ContentType, CursorPosition,
    FeedType, parse_enum
)

logger = logging.getLogger(__name__)

# Marker lookup order when a bare id is given
MARKER_LOOKUP_ORDER = (ContentType.POST, ContentType.POLL, ContentType.STORY)


class NewContentCounter:
    def __init__(self, sources: Dict[ContentType, ContentSource], follow_graph,
                 filters: ContentFilters = None, source_timeout: float = SOURCE_TIMEOUT_SECONDS):
        self.sources = sources
        self.follow_graph = follow_graph
        self.filters = filters or ContentFilters()
        self.source_timeout = source_timeout

    async def get_new_content_count(self, user_id: str, feed_type, tab, since: str,
                                    now: Optional[datetime] = None) -> int:
        """
        Count items newer than the since marker

        Args:
            user_id: Requesting user
            feed_type: 'following' or 'foryou'
            tab: 'home', 'posts', 'polls' or 'stories'
            since: Id of the newest item the client has seen, or a cursor token
            now: Request time for expiry checks

        Raises:
            InvalidQuery: bad enum values, or an unknown since marker
            InvalidCursor: since looks like a cursor but does not decode
            SourceUnavailable: a store or the follow graph failed
        """
        feed_type = parse_enum(FeedType, feed_type, 'feedType')
        tab = parse_enum(ContentTab, tab, 'tab')
        if not since:
            raise InvalidQuery("since is required")
        if feed_type == FeedType.FOLLOWING and not user_id:
            raise InvalidQuery("userId is required for the following feed")
        now = now or utc_now()

        marker = await self.resolve_marker(since)

        query = ContentQuery(after=marker)
        if feed_type == FeedType.FOLLOWING:
            try:
                following = set(await self.follow_graph.get_following(user_id))
            except Exception as e:
                logger.error(f"Failed to resolve following list for {user_id}: {e}")
                raise SourceUnavailable('follow_graph', str(e), cause=e) from e
            if not following:
                return 0
            query = query.merge(author_ids=frozenset(following))

        counts = await asyncio.gather(*[
            self.timed_count(self.sources[content_type], self.query_for(content_type, query, now))
            for content_type in TAB_CONTENT_TYPES[tab]
        ])
        count = sum(counts)

        logger.debug(f"New content for {user_id or 'anonymous'} since {since}: {count}")
        return count

    async def timed_count(self, source: ContentSource, query: ContentQuery) -> int:
        try:
            return await asyncio.wait_for(source.count(query), timeout=self.source_timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"{source.name} count timed out after {self.source_timeout}s")
            raise SourceUnavailable(source.name, 'timed out', cause=e) from e

    async def resolve_marker(self, since: str) -> CursorPosition:
        if is_cursor_token(since):
            return decode_cursor(since)

        for content_type in MARKER_LOOKUP_ORDER:
            item = await self.sources[content_type].get(since)
            if item is not None:
                return item.position

        raise InvalidQuery(f"Unknown since marker '{since}'")

    def query_for(self, content_type: ContentType, query: ContentQuery, now: datetime) -> ContentQuery:
        """Status and expiry rules pushed down to the store so the count stays a single query"""
        if content_type == ContentType.POLL and self.filters.exclude_closed_polls:
            return query.merge(excluded_statuses=CLOSED_POLL_STATUSES, active_at=now)
        if content_type == ContentType.STORY and self.filters.exclude_expired_stories:
            return query.merge(excluded_statuses=EXPIRED_STORY_STATUSES, active_at=now)
        return query

"""
Types shared across the feed engine.

Content type, feed type, tab, sort and priority are closed enums. Raw and
ranked items are frozen dataclasses: scoring and formatting build new objects
instead of mutating candidates.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from feed.config import DEFAULT_FEED_LIMIT, MAX_FEED_LIMIT
from feed.errors import InvalidQuery


class ContentType(str, Enum):
    POST = 'post'
    POLL = 'poll'
    STORY = 'story'


class FeedType(str, Enum):
    FOLLOWING = 'following'
    FORYOU = 'foryou'


class ContentTab(str, Enum):
    HOME = 'home'
    POSTS = 'posts'
    POLLS = 'polls'
    STORIES = 'stories'


class FeedSort(str, Enum):
    NEWEST = 'newest'
    TRENDING = 'trending'


class ContentPriority(str, Enum):
    FOLLOWING = 'following'
    DISCOVER = 'discover'


TAB_CONTENT_TYPES = {
    ContentTab.HOME: (ContentType.POST, ContentType.POLL, ContentType.STORY),
    ContentTab.POSTS: (ContentType.POST,),
    ContentTab.POLLS: (ContentType.POLL,),
    ContentTab.STORIES: (ContentType.STORY,),
}


def parse_enum(enum_cls, value, field_name: str):
    """Convert a raw query value into an enum member or raise InvalidQuery"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise InvalidQuery(f"Unknown {field_name} '{value}' (expected one of: {allowed})")


@dataclass(frozen=True)
class CursorPosition:
    """A point in the merged stream's total order"""

    created_at: datetime
    type: ContentType
    id: str

    def sort_key(self) -> Tuple[datetime, str, str]:
        return (self.created_at, self.type.value, self.id)

    def is_beyond(self, anchor: 'CursorPosition') -> bool:
        """True when this position comes after the anchor in the newest-first order"""
        return self.sort_key() < anchor.sort_key()


@dataclass(frozen=True)
class RawContentItem:
    id: str
    type: ContentType
    content: Any
    created_at: datetime
    author_id: str
    reactions_count: int = 0
    comments_count: int = 0
    total_votes: int = 0

    @property
    def position(self) -> CursorPosition:
        return CursorPosition(self.created_at, self.type, self.id)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.type.value, self.id)

    @property
    def total_engagement(self) -> int:
        votes = self.total_votes if self.type == ContentType.POLL else 0
        return self.reactions_count + self.comments_count + votes


@dataclass(frozen=True)
class AuthorProfile:
    """What the author directory knows about a user"""

    id: str
    username: str
    profile_image: Optional[str] = None
    followers_count: int = 0


@dataclass(frozen=True)
class AuthorSnapshot:
    id: str
    username: str
    profile_image: Optional[str] = None

    def to_dict(self) -> Dict:
        return {'id': self.id, 'username': self.username, 'profileImage': self.profile_image}


@dataclass(frozen=True)
class EngagementMetrics:
    reactions: int
    comments: int
    votes: int

    def to_dict(self) -> Dict:
        return {'reactions': self.reactions, 'comments': self.comments, 'votes': self.votes}


@dataclass(frozen=True)
class ScoredItem:
    """A raw item with its score and priority, before author enrichment"""

    item: RawContentItem
    score: float
    priority: ContentPriority


@dataclass(frozen=True)
class FeedItem:
    id: str
    type: ContentType
    content: Any
    created_at: datetime
    author_id: str
    reactions_count: int
    comments_count: int
    total_votes: int
    score: float
    priority: ContentPriority
    engagement_metrics: EngagementMetrics
    author: AuthorSnapshot

    @classmethod
    def from_scored(cls, scored: ScoredItem, author: AuthorSnapshot) -> 'FeedItem':
        item = scored.item
        votes = item.total_votes if item.type == ContentType.POLL else 0
        return cls(
            id=item.id,
            type=item.type,
            content=item.content,
            created_at=item.created_at,
            author_id=item.author_id,
            reactions_count=item.reactions_count,
            comments_count=item.comments_count,
            total_votes=votes,
            score=scored.score,
            priority=scored.priority,
            engagement_metrics=EngagementMetrics(item.reactions_count, item.comments_count, votes),
            author=author,
        )

    def to_dict(self) -> Dict:
        return {
            '_id': self.id,
            'type': self.type.value,
            'content': self.content,
            'score': self.score,
            'priority': self.priority.value,
            'createdAt': self.created_at.isoformat(),
            'authorId': self.author_id,
            'reactionsCount': self.reactions_count,
            'commentsCount': self.comments_count,
            'totalVotes': self.total_votes,
            'engagementMetrics': self.engagement_metrics.to_dict(),
            'author': self.author.to_dict(),
        }


@dataclass(frozen=True)
class ContentFilters:
    max_age_days: Optional[float] = None
    min_engagement: Optional[int] = None
    exclude_expired_stories: bool = True
    exclude_closed_polls: bool = True


@dataclass(frozen=True)
class FeedQueryOptions:
    user_id: str
    feed_type: FeedType
    tab: ContentTab = ContentTab.HOME
    sort: FeedSort = FeedSort.NEWEST
    cursor: Optional[str] = None
    limit: int = DEFAULT_FEED_LIMIT
    filters: ContentFilters = field(default_factory=ContentFilters)

    @classmethod
    def parse(cls, user_id, feed_type, tab='home', sort='newest', cursor=None,
              limit=DEFAULT_FEED_LIMIT, filters: Optional[ContentFilters] = None) -> 'FeedQueryOptions':
        """Build options from raw request values, rejecting anything malformed"""
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise InvalidQuery(f"limit must be an integer, got '{limit}'")

        options = cls(
            user_id=user_id or '',
            feed_type=parse_enum(FeedType, feed_type, 'feedType'),
            tab=parse_enum(ContentTab, tab, 'tab'),
            sort=parse_enum(FeedSort, sort, 'sort'),
            cursor=cursor or None,
            limit=limit,
            filters=filters or ContentFilters(),
        )
        options.validate()
        return options

    def validate(self, max_limit: int = MAX_FEED_LIMIT):
        if isinstance(self.limit, bool) or not isinstance(self.limit, int):
            raise InvalidQuery(f"limit must be an integer, got '{self.limit}'")
        if self.limit <= 0 or self.limit > max_limit:
            raise InvalidQuery(f"limit must be between 1 and {max_limit}, got {self.limit}")
        for enum_cls, value, name in ((FeedType, self.feed_type, 'feedType'),
                                      (ContentTab, self.tab, 'tab'),
                                      (FeedSort, self.sort, 'sort')):
            if not isinstance(value, enum_cls):
                raise InvalidQuery(f"Unknown {name} '{value}'")
        if self.feed_type == FeedType.FOLLOWING and not self.user_id:
            raise InvalidQuery("userId is required for the following feed")
        filters = self.filters
        if filters.max_age_days is not None and filters.max_age_days <= 0:
            raise InvalidQuery(f"maxAge must be positive, got {filters.max_age_days}")
        if filters.min_engagement is not None and filters.min_engagement < 0:
            raise InvalidQuery(f"minEngagement must be non-negative, got {filters.min_engagement}")


@dataclass(frozen=True)
class FeedResponse:
    items: List[FeedItem]
    next_cursor: Optional[str]
    has_more: bool
    feed_type: FeedType
    tab: ContentTab
    sort: FeedSort
    total_available: Optional[int] = None
    partial: bool = False
    failed_sources: Tuple[str, ...] = ()

    def to_dict(self) -> Dict:
        metadata = {
            'feedType': self.feed_type.value,
            'tab': self.tab.value,
            'sort': self.sort.value,
            'partial': self.partial,
            'failedSources': list(self.failed_sources),
        }
        if self.total_available is not None:
            metadata['totalAvailable'] = self.total_available
        return {
            'items': [item.to_dict() for item in self.items],
            'pagination': {
                'nextCursor': self.next_cursor,
                'hasMore': self.has_more,
                'count': len(self.items),
            },
            'metadata': metadata,
        }

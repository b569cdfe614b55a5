"""
Feed engine - merges posts, polls and stories into one ranked, cursor-paginated feed.

Main modules:
- feedAggregator: fan-out, merge, filter, score, mix and paginate
- contentSources: per content type adapters over document stores
- contentClassifier: structural type guards and author id resolution
- scoringEngine: recency, engagement, following and popularity scoring
- contentFilters: post-fetch candidate pruning
- cursorCodec: versioned opaque cursors
- newContentCounter: cheap "new since" counts
- config: constants and configuration
"""

from feed.config import LoggingConfig

from feed.types import (
    ContentFilters,
    ContentPriority,
    ContentTab,
    ContentType,
    FeedItem,
    FeedQueryOptions,
    FeedResponse,
    FeedSort,
    FeedType,
    RawContentItem
)

from feed.errors import (
    FeedError,
    InvalidCursor,
    InvalidQuery,
    SourceUnavailable
)

from feed.contentClassifier import (
    classify_content,
    get_content_author_id,
    is_poll,
    is_post,
    is_story
)

from feed.contentSources import (
    ContentQuery,
    PollSource,
    PostSource,
    StorySource,
    build_sources
)

from feed.scoringEngine import ScoringWeights
from feed.cursorCodec import decode_cursor, encode_cursor
from feed.feedAggregator import FeedAggregator
from feed.newContentCounter import NewContentCounter

__version__ = "1.0.0"

__all__ = [
    # Entry points
    'FeedAggregator',
    'NewContentCounter',

    # Types
    'ContentFilters',
    'ContentPriority',
    'ContentTab',
    'ContentType',
    'FeedItem',
    'FeedQueryOptions',
    'FeedResponse',
    'FeedSort',
    'FeedType',
    'RawContentItem',

    # Errors
    'FeedError',
    'InvalidCursor',
    'InvalidQuery',
    'SourceUnavailable',

    # Classification
    'classify_content',
    'get_content_author_id',
    'is_poll',
    'is_post',
    'is_story',

    # Sources
    'ContentQuery',
    'PollSource',
    'PostSource',
    'StorySource',
    'build_sources',

    # Scoring and cursors
    'ScoringWeights',
    'decode_cursor',
    'encode_cursor',

    # Configuration
    'LoggingConfig',
]

"""
Configuration and constants for the feed engine.
"""
import os
import logging

from dotenv import load_dotenv

load_dotenv()

# Page size limits
DEFAULT_FEED_LIMIT = int(os.getenv('FEED_DEFAULT_LIMIT', 20))
MAX_FEED_LIMIT = int(os.getenv('FEED_MAX_LIMIT', 50))

# Every source is asked for limit * OVERFETCH_FACTOR candidates
OVERFETCH_FACTOR = 3

# Fan-out
SOURCE_TIMEOUT_SECONDS = float(os.getenv('FEED_SOURCE_TIMEOUT_SECONDS', 2.0))
SOURCE_FAILURE_POLICY = os.getenv('FEED_SOURCE_FAILURE_POLICY', 'degrade')
FAILURE_POLICIES = ('degrade', 'fail')

# Follow graph cache
FOLLOWING_LIST_CACHE_TTL = 900  # 15 minutes

# Home tab diversity (trending only)
APPLY_HOME_DIVERSITY = True
MAX_CONSECUTIVE_PER_AUTHOR = 3
AUTHOR_DIVERSITY_WINDOW = 5
CONTENT_TYPE_PATTERN = ('post', 'post', 'poll', 'story')
APPLY_HOME_CONTENT_MIX = True

# Status values
PUBLISHED_STORY_STATUS = 'published'
EXPIRED_STORY_STATUSES = frozenset({'expired'})
CLOSED_POLL_STATUSES = frozenset({'closed', 'expired'})

UNKNOWN_USERNAME = 'Unknown'


class LoggingConfig:
    """Logging configuration for the feed engine."""

    LEVEL = logging.INFO
    FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @staticmethod
    def configure_logging():
        """Configure logging for the feed engine."""
        logging.basicConfig(
            level=LoggingConfig.LEVEL,
            format=LoggingConfig.FORMAT
        )


class DefaultWeights:
    """Default trending weights. Recency must outweigh engagement so decay wins eventually."""

    RECENCY = 0.4
    ENGAGEMENT = 0.3
    FOLLOWING = 0.2
    POPULARITY = 0.1


class ScoringConstants:
    """Shape parameters for the scoring curves."""

    RECENCY_HALF_LIFE_HOURS = 24.0
    ENGAGEMENT_CEILING = 1000
    POPULARITY_HALF_POINT = 100


class ContentMix:
    """Minimum share of a trending home page reserved for each content type."""

    POSTS_RATIO = 0.6
    POLLS_RATIO = 0.2
    STORIES_RATIO = 0.2


class ForYouMix:
    """Following / discovery blend for the For You feed."""

    FOLLOWING_RATIO = 0.7
    DISCOVERY_RATIO = 0.3
    # Below this many followed authors the page is discovery only
    MIN_FOLLOWING_FOR_MIX = 1

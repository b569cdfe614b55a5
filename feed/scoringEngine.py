"""
Ranking and scoring functions for the feed engine.

Trending score = weighted sum of four components:

    recency     exp(-ln2 * age_hours / half_life), in (0, 1], strictly decreasing
    engagement  min(1, log1p(E) / log1p(ceiling)), E = reactions + comments + votes
    following   1.0 when the requester follows the author, else 0.0
    popularity  f / (f + half_point) for the author's follower count f

Engagement is log-scaled and capped, so with recency weighted above
engagement a fresh item always overtakes a stale viral one eventually.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from feed.config import (
    AUTHOR_DIVERSITY_WINDOW, CONTENT_TYPE_PATTERN, MAX_CONSECUTIVE_PER_AUTHOR,
    DefaultWeights, ScoringConstants
)
from feed.errors import InvalidQuery
from feed.timeUtils import age_hours
from feed.types import ContentPriority, FeedSort, RawContentItem, ScoredItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringWeights:
    recency: float = DefaultWeights.RECENCY
    engagement: float = DefaultWeights.ENGAGEMENT
    following: float = DefaultWeights.FOLLOWING
    popularity: float = DefaultWeights.POPULARITY

    def validate(self):
        for name in ('recency', 'engagement', 'following', 'popularity'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or math.isnan(value) or value < 0:
                raise InvalidQuery(f"Scoring weight '{name}' must be a non-negative number, got {value!r}")


def calculate_recency_score(created_at: datetime, now: datetime,
                            half_life_hours: float = ScoringConstants.RECENCY_HALF_LIFE_HOURS) -> float:
    """Exponential time decay: 1.0 for brand new content, halving every half_life_hours"""
    age = age_hours(created_at, now)
    return math.exp(-math.log(2) * age / half_life_hours)


def calculate_engagement_score(item: RawContentItem,
                               ceiling: int = ScoringConstants.ENGAGEMENT_CEILING) -> float:
    """Log-scaled engagement, saturating at 1.0 once total engagement reaches the ceiling"""
    engagement = item.total_engagement
    if engagement <= 0:
        return 0.0
    return min(1.0, math.log1p(engagement) / math.log1p(ceiling))


def calculate_popularity_score(follower_count: int,
                               half_point: int = ScoringConstants.POPULARITY_HALF_POINT) -> float:
    if follower_count <= 0:
        return 0.0
    return follower_count / (follower_count + half_point)


def calculate_content_score(
    item: RawContentItem,
    now: datetime,
    is_following: bool,
    follower_count: int = 0,
    weights: ScoringWeights = ScoringWeights()
) -> float:
    """Trending score for one item"""
    recency_score = calculate_recency_score(item.created_at, now)
    engagement_score = calculate_engagement_score(item)
    following_score = 1.0 if is_following else 0.0
    popularity_score = calculate_popularity_score(follower_count)

    return (
        recency_score * weights.recency +
        engagement_score * weights.engagement +
        following_score * weights.following +
        popularity_score * weights.popularity
    )


def score_items(
    items: List[RawContentItem],
    now: datetime,
    is_following: Callable[[str], bool],
    sort: FeedSort,
    follower_counts: Optional[Dict[str, int]] = None,
    weights: ScoringWeights = ScoringWeights()
) -> List[ScoredItem]:
    """
    Score and tag every candidate

    Newest mode records the recency component as the score; ordering in that
    mode ignores the score entirely. Priority is tagged in both modes.
    """
    follower_counts = follower_counts or {}
    scored_items = []

    for item in items:
        followed = bool(item.author_id) and is_following(item.author_id)
        if sort == FeedSort.TRENDING:
            score = calculate_content_score(
                item,
                now,
                followed,
                follower_counts.get(item.author_id, 0),
                weights
            )
        else:
            score = calculate_recency_score(item.created_at, now)

        priority = ContentPriority.FOLLOWING if followed else ContentPriority.DISCOVER
        scored_items.append(ScoredItem(item=item, score=score, priority=priority))

    following_count = sum(1 for s in scored_items if s.priority == ContentPriority.FOLLOWING)
    logger.debug(f"Scored {len(scored_items)} items ({following_count} following, {sort.value} mode)")
    return scored_items


def sort_key(scored: ScoredItem, sort: FeedSort):
    """Descending sort key: total order for newest, score then total order for trending"""
    position_key = scored.item.position.sort_key()
    if sort == FeedSort.TRENDING:
        return (scored.score,) + position_key
    return position_key


def rank_items(scored_items: List[ScoredItem], sort: FeedSort) -> List[ScoredItem]:
    return sorted(scored_items, key=lambda s: sort_key(s, sort), reverse=True)


def apply_content_type_diversity(scored_items: List[ScoredItem],
                                 pattern=CONTENT_TYPE_PATTERN) -> List[ScoredItem]:
    """Interleave content types following the pattern (2 posts, 1 poll, 1 story), keeping rank within each type"""
    queues = {}
    for scored in scored_items:
        queues.setdefault(scored.item.type.value, []).append(scored)

    result = []
    indexes = {content_type: 0 for content_type in queues}
    while len(result) < len(scored_items):
        for content_type in pattern:
            queue = queues.get(content_type, [])
            if indexes.get(content_type, 0) < len(queue):
                result.append(queue[indexes[content_type]])
                indexes[content_type] += 1
        # Types outside the pattern keep their relative order at the end
        if all(indexes.get(t, 0) >= len(queues.get(t, [])) for t in pattern):
            for content_type, queue in queues.items():
                if content_type not in pattern:
                    result.extend(queue)
            break

    return result


def apply_author_diversity(scored_items: List[ScoredItem],
                           max_consecutive: int = MAX_CONSECUTIVE_PER_AUTHOR,
                           window: int = AUTHOR_DIVERSITY_WINDOW) -> List[ScoredItem]:
    """Stop one author dominating: items over the per-window cap are moved to the end"""
    result = []
    deferred = []
    recent_authors = []

    for scored in scored_items:
        author_id = scored.item.author_id
        if recent_authors.count(author_id) >= max_consecutive:
            deferred.append(scored)
            continue

        result.append(scored)
        recent_authors.append(author_id)
        if len(recent_authors) > window:
            recent_authors.pop(0)

    if deferred:
        logger.debug(f"Author diversity deferred {len(deferred)} items")
    return result + deferred

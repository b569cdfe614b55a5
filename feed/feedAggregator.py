"""
Feed aggregation: fan out to the active content sources, merge, filter,
score, mix and paginate.

Pagination anchors on the total order (createdAt, type, id) descending, never
on an offset. The cursor of a page is the oldest emitted item's position, so
no item can appear on two pages. A page never reaches past the oldest item of
any source batch that came back full ("horizon"): content older than that has
not been seen yet and belongs to a later page.

Newest pages are always a contiguous run of the total order. Trending pages
pick by score (following / discovery mix, content type shares), and unpicked
candidates newer than the anchor are not served later.
"""
import asyncio
import logging
import math
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

from feed.config import (
    APPLY_HOME_CONTENT_MIX, APPLY_HOME_DIVERSITY, FAILURE_POLICIES, MAX_FEED_LIMIT,
    OVERFETCH_FACTOR, SOURCE_FAILURE_POLICY, SOURCE_TIMEOUT_SECONDS, UNKNOWN_USERNAME,
    ContentMix, ForYouMix
)
from feed.contentFilters import apply_content_filters
from feed.contentSources import ContentQuery, ContentSource
from feed.cursorCodec import decode_cursor, encode_cursor
from feed.errors import SourceUnavailable
from feed.scoringEngine import (
    ScoringWeights, apply_author_diversity, apply_content_type_diversity,
    rank_items, score_items
)
from feed.timeUtils import utc_now
from feed.types import (
    TAB_CONTENT_TYPES, AuthorProfile, AuthorSnapshot, ContentPriority, ContentTab,
    ContentType, CursorPosition, FeedItem, FeedQueryOptions, FeedResponse, FeedSort,
    FeedType, RawContentItem, ScoredItem
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchPlan:
    source: ContentSource
    pool: str  # 'following', 'discovery' or 'all'
    query: ContentQuery


@dataclass
class FetchOutcome:
    items: List[RawContentItem]
    full: bool


class FeedAggregator:
    def __init__(
        self,
        sources: Dict[ContentType, ContentSource],
        follow_graph,
        author_directory=None,
        weights: ScoringWeights = None,
        failure_policy: str = SOURCE_FAILURE_POLICY,
        source_timeout: float = SOURCE_TIMEOUT_SECONDS,
        max_limit: int = MAX_FEED_LIMIT,
        overfetch_factor: int = OVERFETCH_FACTOR,
        following_ratio: float = ForYouMix.FOLLOWING_RATIO,
        min_following_for_mix: int = ForYouMix.MIN_FOLLOWING_FOR_MIX,
        apply_home_diversity: bool = APPLY_HOME_DIVERSITY,
        apply_home_content_mix: bool = APPLY_HOME_CONTENT_MIX
    ):
        """
        Initialize the aggregator

        Args:
            sources: One content source per content type
            follow_graph: Object with async get_following(user_id) -> set of author ids
            author_directory: Optional object with async get_authors(ids) -> {id: AuthorProfile}
            weights: Trending weights (defaults documented in feed.config.DefaultWeights)
            failure_policy: 'degrade' drops a failed source and flags the page partial,
                'fail' raises SourceUnavailable for the whole request
            source_timeout: Seconds before a single source call is abandoned
            max_limit: Largest page size accepted
            overfetch_factor: Each source is asked for limit * overfetch_factor items
            following_ratio: Target share of followed authors on For You pages
            min_following_for_mix: Follow count below which For You is discovery only
            apply_home_diversity: Interleave types and authors on trending home pages
            apply_home_content_mix: Reserve a share of trending home pages for each content type
        """
        if failure_policy not in FAILURE_POLICIES:
            raise ValueError(f"Unknown source failure policy '{failure_policy}'")
        if overfetch_factor < 1:
            raise ValueError("overfetch_factor must be at least 1")

        self.sources = sources
        self.follow_graph = follow_graph
        self.author_directory = author_directory
        self.weights = weights or ScoringWeights()
        self.weights.validate()
        self.failure_policy = failure_policy
        self.source_timeout = source_timeout
        self.max_limit = max_limit
        self.overfetch_factor = overfetch_factor
        self.following_ratio = following_ratio
        self.min_following_for_mix = min_following_for_mix
        self.apply_home_diversity = apply_home_diversity
        self.apply_home_content_mix = apply_home_content_mix
        self.content_quotas = {
            ContentType.POST: ContentMix.POSTS_RATIO,
            ContentType.POLL: ContentMix.POLLS_RATIO,
            ContentType.STORY: ContentMix.STORIES_RATIO,
        }

    async def get_feed(self, options: FeedQueryOptions, now: Optional[datetime] = None) -> FeedResponse:
        """
        Build one page of the feed

        Raises:
            InvalidQuery: options are out of bounds (checked before any I/O)
            InvalidCursor: the cursor does not decode
            SourceUnavailable: a source failed under the 'fail' policy, or the
                follow graph could not be read
        """
        options.validate(self.max_limit)
        anchor = decode_cursor(options.cursor) if options.cursor else None
        now = now or utc_now()

        following = await self.resolve_following(options.user_id)
        if options.feed_type == FeedType.FOLLOWING and not following:
            logger.info(f"User {options.user_id} follows nobody, returning empty following feed")
            return self.empty_response(options)

        # Newest pages stay a contiguous run of the total order, so only trending mixes
        mix = (options.feed_type == FeedType.FORYOU and options.sort == FeedSort.TRENDING
               and len(following) >= self.min_following_for_mix)
        fetch_limit = options.limit * self.overfetch_factor
        plans = self.build_fetch_plans(options, following, anchor, mix)
        count_queries = self.build_count_queries(options, following)

        outcomes, counts, failed_sources = await self.fan_out(plans, count_queries, fetch_limit)

        candidates = self.merge_candidates(outcomes)
        candidates = apply_content_filters(candidates, options.filters, now)
        horizon = self.find_horizon(outcomes)
        if horizon is not None:
            candidates = [c for c in candidates if not c.position.is_beyond(horizon)]

        profiles = await self.resolve_authors({c.author_id for c in candidates if c.author_id})
        follower_counts = {author_id: p.followers_count for author_id, p in profiles.items()}

        scored = score_items(
            candidates,
            now,
            following.__contains__,
            options.sort,
            follower_counts=follower_counts,
            weights=self.weights
        )
        ranked = rank_items(scored, options.sort)

        if mix:
            page = rank_items(self.mix_following_and_discovery(ranked, options.limit), options.sort)
        else:
            page = ranked[:options.limit]

        if options.tab == ContentTab.HOME and options.sort == FeedSort.TRENDING:
            if self.apply_home_content_mix:
                page = rank_items(self.balance_content_types(page, ranked, options.limit), options.sort)
            if self.apply_home_diversity:
                page = apply_author_diversity(apply_content_type_diversity(page))

        next_cursor, has_more = self.paginate(page, ranked, horizon)

        items = [FeedItem.from_scored(s, self.author_snapshot(s.item, profiles)) for s in page]

        total_available = None
        if not failed_sources and counts is not None:
            total_available = sum(counts)

        following_in_page = sum(1 for s in page if s.priority == ContentPriority.FOLLOWING)
        logger.info(
            f"Served {len(items)} items to {options.user_id or 'anonymous'} "
            f"({options.feed_type.value}/{options.tab.value}/{options.sort.value}, "
            f"{following_in_page} following, {len(candidates)} candidates, has_more={has_more})"
        )

        return FeedResponse(
            items=items,
            next_cursor=next_cursor,
            has_more=has_more,
            feed_type=options.feed_type,
            tab=options.tab,
            sort=options.sort,
            total_available=total_available,
            partial=bool(failed_sources),
            failed_sources=tuple(sorted(failed_sources)),
        )

    async def resolve_following(self, user_id: str) -> Set[str]:
        if not user_id:
            return set()
        try:
            return set(await self.follow_graph.get_following(user_id))
        except Exception as e:
            logger.error(f"Failed to resolve following list for {user_id}: {e}")
            raise SourceUnavailable('follow_graph', str(e), cause=e) from e

    async def resolve_authors(self, author_ids: Set[str]) -> Dict[str, AuthorProfile]:
        """Batch author lookup; a failing directory falls back to embedded snapshots"""
        if not author_ids or self.author_directory is None:
            return {}
        try:
            return await self.author_directory.get_authors(sorted(author_ids))
        except Exception as e:
            logger.warning(f"Author directory unavailable, using embedded snapshots: {e}")
            return {}

    def active_sources(self, tab: ContentTab) -> List[ContentSource]:
        return [self.sources[content_type] for content_type in TAB_CONTENT_TYPES[tab]]

    def build_fetch_plans(self, options: FeedQueryOptions, following: Set[str],
                          anchor: Optional[CursorPosition], mix: bool) -> List[FetchPlan]:
        base = ContentQuery(before=anchor)
        followed = frozenset(following)
        plans = []

        for source in self.active_sources(options.tab):
            if options.feed_type == FeedType.FOLLOWING:
                plans.append(FetchPlan(source, 'following', base.merge(author_ids=followed)))
            elif mix:
                plans.append(FetchPlan(source, 'following', base.merge(author_ids=followed)))
                plans.append(FetchPlan(source, 'discovery', base.merge(exclude_author_ids=followed)))
            else:
                plans.append(FetchPlan(source, 'all', base))

        return plans

    def build_count_queries(self, options: FeedQueryOptions,
                            following: Set[str]) -> List[Tuple[ContentSource, ContentQuery]]:
        query = ContentQuery()
        if options.feed_type == FeedType.FOLLOWING:
            query = query.merge(author_ids=frozenset(following))
        return [(source, query) for source in self.active_sources(options.tab)]

    async def guarded(self, coro, source_name: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.source_timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"{source_name} source timed out after {self.source_timeout}s")
            raise SourceUnavailable(source_name, 'timed out', cause=e) from e

    async def fan_out(self, plans: Sequence[FetchPlan],
                      count_queries: Sequence[Tuple[ContentSource, ContentQuery]],
                      fetch_limit: int) -> Tuple[List[FetchOutcome], Optional[List[int]], Set[str]]:
        """
        Query every source concurrently and join

        Only fetch failures go through the failure policy. Counts feed the
        totalAvailable metadata and nothing else, so a failed count just
        leaves that total unknown.

        Returns:
            (fetch outcomes of healthy sources, counts or None if any count
            failed, failed source names)
        """
        fetches = [self.guarded(plan.source.fetch(plan.query, fetch_limit), plan.source.name)
                   for plan in plans]
        count_calls = [self.guarded(source.count(query), source.name)
                       for source, query in count_queries]

        results = await asyncio.gather(*fetches, *count_calls, return_exceptions=True)
        fetch_results = results[:len(fetches)]
        count_results = results[len(fetches):]

        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, SourceUnavailable):
                raise result

        fetch_errors = [r for r in fetch_results if isinstance(r, SourceUnavailable)]
        failed_sources = {error.source for error in fetch_errors}

        if failed_sources:
            if self.failure_policy == 'fail':
                logger.error(f"Failing feed request, sources unavailable: {sorted(failed_sources)}")
                raise fetch_errors[0]
            logger.warning(f"Degrading feed, omitting sources: {sorted(failed_sources)}")

        outcomes = []
        for plan, result in zip(plans, fetch_results):
            if plan.source.name in failed_sources:
                continue
            outcomes.append(FetchOutcome(items=result, full=len(result) >= fetch_limit))

        count_errors = [r for r in count_results if isinstance(r, SourceUnavailable)]
        if count_errors:
            logger.warning(f"Total available unknown, counts failed for: "
                           f"{sorted({error.source for error in count_errors})}")
            return outcomes, None, failed_sources

        return outcomes, list(count_results), failed_sources

    def merge_candidates(self, outcomes: Sequence[FetchOutcome]) -> List[RawContentItem]:
        seen = set()
        merged = []
        duplicate_count = 0

        for outcome in outcomes:
            for item in outcome.items:
                if item.key in seen:
                    duplicate_count += 1
                    continue
                seen.add(item.key)
                merged.append(item)

        if duplicate_count > 0:
            logger.warning(f"Deduplication: dropped {duplicate_count} repeated (type, id) pairs")
        return merged

    @staticmethod
    def find_horizon(outcomes: Sequence[FetchOutcome]) -> Optional[CursorPosition]:
        """Newest among the oldest items of full batches; nothing beyond it has been fetched everywhere"""
        horizon = None
        for outcome in outcomes:
            if not outcome.full or not outcome.items:
                continue
            oldest = min((item.position for item in outcome.items), key=CursorPosition.sort_key)
            if horizon is None or horizon.is_beyond(oldest):
                horizon = oldest
        return horizon

    def mix_following_and_discovery(self, ranked: List[ScoredItem], limit: int) -> List[ScoredItem]:
        """
        Fill the page with followed authors up to the target share, then discovery,
        then top up from the remaining followed items if discovery runs short
        """
        following_items = [s for s in ranked if s.priority == ContentPriority.FOLLOWING]
        discovery_items = [s for s in ranked if s.priority == ContentPriority.DISCOVER]
        following_target = min(limit, math.ceil(limit * self.following_ratio))

        chosen = following_items[:following_target]
        chosen += discovery_items[:limit - len(chosen)]
        if len(chosen) < limit:
            chosen += following_items[following_target:following_target + (limit - len(chosen))]

        logger.debug(f"For You mix: {min(len(following_items), following_target)} following target fill, "
                     f"{len(chosen)} total from {len(following_items)} following / {len(discovery_items)} discovery")
        return chosen

    def balance_content_types(self, page: List[ScoredItem], ranked: List[ScoredItem],
                              limit: int) -> List[ScoredItem]:
        """
        Keep a busy content type from crowding the others off a home page

        Each type is owed ceil(limit * share) slots. A type short of its share
        takes its best unchosen candidates, replacing the lowest ranked items
        of types holding more than they are owed.
        """
        quotas = {content_type: math.ceil(limit * share)
                  for content_type, share in self.content_quotas.items()}
        chosen = list(page)
        chosen_keys = {s.item.key for s in chosen}
        counts = Counter(s.item.type for s in chosen)
        swapped = 0

        for content_type, quota in quotas.items():
            spare = iter([s for s in ranked
                          if s.item.type == content_type and s.item.key not in chosen_keys])
            while counts[content_type] < quota:
                candidate = next(spare, None)
                if candidate is None:
                    break
                victim_index = next(
                    (i for i in reversed(range(len(chosen)))
                     if counts[chosen[i].item.type] > quotas.get(chosen[i].item.type, 0)),
                    None
                )
                if victim_index is None:
                    break
                counts[chosen[victim_index].item.type] -= 1
                chosen[victim_index] = candidate
                chosen_keys.add(candidate.item.key)
                counts[content_type] += 1
                swapped += 1

        if swapped:
            logger.debug(f"Content mix swapped {swapped} items into the page")
        return chosen

    @staticmethod
    def paginate(page: List[ScoredItem], ranked: List[ScoredItem],
                 horizon: Optional[CursorPosition]) -> Tuple[Optional[str], bool]:
        if not page:
            if horizon is not None:
                # Every fetched candidate was filtered out but the sources hold more
                return encode_cursor(horizon), True
            return None, False

        anchor = min((s.item.position for s in page), key=CursorPosition.sort_key)
        emitted = {s.item.key for s in page}
        remaining = any(
            s.item.key not in emitted and s.item.position.is_beyond(anchor)
            for s in ranked
        )
        return encode_cursor(anchor), remaining or horizon is not None

    @staticmethod
    def author_snapshot(item: RawContentItem, profiles: Dict[str, AuthorProfile]) -> AuthorSnapshot:
        profile = profiles.get(item.author_id)
        if profile is not None:
            return AuthorSnapshot(item.author_id, profile.username, profile.profile_image)

        embedded = item.content.get('author') if isinstance(item.content, dict) else None
        if isinstance(embedded, dict) and embedded.get('username'):
            return AuthorSnapshot(item.author_id, embedded['username'], embedded.get('profileImage'))

        return AuthorSnapshot(item.author_id, UNKNOWN_USERNAME, None)

    @staticmethod
    def empty_response(options: FeedQueryOptions) -> FeedResponse:
        return FeedResponse(
            items=[],
            next_cursor=None,
            has_more=False,
            feed_type=options.feed_type,
            tab=options.tab,
            sort=options.sort,
            total_available=0,
        )

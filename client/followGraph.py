import logging
from collections import defaultdict
from typing import Dict, Iterable, Set


class InMemoryFollowGraph:
    """Follow graph kept in memory: user id -> ids of the authors they follow"""

    def __init__(self, follows: Dict[str, Iterable[str]] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.follows: Dict[str, Set[str]] = defaultdict(set)
        for user_id, followed in (follows or {}).items():
            self.follows[user_id].update(followed)

    def follow(self, user_id: str, author_id: str):
        if user_id != author_id:
            self.follows[user_id].add(author_id)

    def unfollow(self, user_id: str, author_id: str):
        self.follows[user_id].discard(author_id)

    async def get_following(self, user_id: str) -> Set[str]:
        return set(self.follows.get(user_id, set()))

    async def is_following(self, user_id: str, author_id: str) -> bool:
        return author_id in self.follows.get(user_id, set())

    async def follower_count(self, author_id: str) -> int:
        return sum(1 for followed in self.follows.values() if author_id in followed)


class CachedFollowGraph:
    """
    Follow graph read through a Redis cache

    Following sets are served from Redis while fresh; on a miss the upstream
    graph is queried and the result cached.
    """

    def __init__(self, redis_client, upstream):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.redis_client = redis_client
        self.upstream = upstream

    async def get_following(self, user_id: str) -> Set[str]:
        cached_following = await self.redis_client.get_following(user_id)
        if cached_following is not None:
            self.logger.debug(f"Using cached following list for {user_id}: {len(cached_following)} accounts")
            return cached_following

        self.logger.info(f"Fetching fresh following list for {user_id}")
        following = set(await self.upstream.get_following(user_id))
        await self.redis_client.cache_following(user_id, following)
        return following

    async def is_following(self, user_id: str, author_id: str) -> bool:
        return author_id in await self.get_following(user_id)

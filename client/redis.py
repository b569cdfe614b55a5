import logging
import os
from typing import Dict, Iterable, Optional, Set

import redis.asyncio as redis

from feed.config import FOLLOWING_LIST_CACHE_TTL


class Client:
    def __init__(self, redis_url: str = None, connection=None):
        """
        Initialize Redis client for follow-graph caching

        Args:
            redis_url: Redis connection URL (from environment)
            connection: Pre-built redis.asyncio connection, mainly for tests
        """
        self.logger = logging.getLogger(self.__class__.__name__)

        if connection is not None:
            self.client = connection
            return

        if not redis_url:
            redis_url = os.getenv('REDIS_URL', 'redis://localhost:6379')

        try:
            self.client = redis.from_url(redis_url, decode_responses=True)
        except Exception as e:
            self.logger.error(f"Failed to create Redis connection: {e}")
            raise

    async def ping(self) -> bool:
        try:
            await self.client.ping()
            self.logger.info("Redis connection established")
            return True
        except Exception as e:
            self.logger.error(f"Failed to connect to Redis: {e}")
            raise

    @staticmethod
    def following_key(user_id: str) -> str:
        return f"following:{user_id}"

    @staticmethod
    def following_marker_key(user_id: str) -> str:
        # Set when a following list is cached, so an empty list is still a cache hit
        return f"following_cached:{user_id}"

    async def get_following(self, user_id: str) -> Optional[Set[str]]:
        """
        Retrieve a user's cached following set

        Args:
            user_id: User identifier

        Returns:
            Set of followed author ids, or None on cache miss
        """
        if not await self.client.exists(self.following_marker_key(user_id)):
            self.logger.debug(f"No cached following list for user {user_id}")
            return None

        members = await self.client.smembers(self.following_key(user_id))
        following = {str(member) for member in members}
        self.logger.debug(f"Retrieved {len(following)} followed accounts for user {user_id}")
        return following

    async def cache_following(self, user_id: str, following: Iterable[str],
                              ttl: int = FOLLOWING_LIST_CACHE_TTL) -> bool:
        """
        Store a user's following set

        Args:
            user_id: User identifier
            following: Followed author ids
            ttl: Time to live in seconds (default: 15 minutes)
        """
        key = self.following_key(user_id)
        marker_key = self.following_marker_key(user_id)
        members = list(following)

        pipe = self.client.pipeline(transaction=True)
        pipe.delete(key)
        if members:
            pipe.sadd(key, *members)
            pipe.expire(key, ttl)
        pipe.set(marker_key, 1, ex=ttl)
        await pipe.execute()

        self.logger.info(f"Cached following list for user {user_id}: {len(members)} accounts")
        return True

    async def invalidate_following(self, user_id: str) -> bool:
        """Drop a cached following set after a follow or unfollow"""
        result = await self.client.delete(self.following_key(user_id), self.following_marker_key(user_id))
        self.logger.info(f"Invalidated following cache for user {user_id}")
        return bool(result)

    async def get_stats(self) -> Dict:
        """Get cache statistics"""
        info = await self.client.info()
        return {
            'connected_clients': info.get('connected_clients', 0),
            'used_memory_human': info.get('used_memory_human', '0B'),
            'keyspace_hits': info.get('keyspace_hits', 0),
            'keyspace_misses': info.get('keyspace_misses', 0)
        }

    async def close(self):
        await self.client.aclose()

import os
import sys
import json
import logging
import base64
import binascii
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

# Add parent directory to path for imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from feed.config import DEFAULT_FEED_LIMIT, LoggingConfig
from feed.contentSources import build_sources
from feed.errors import FeedError
from feed.feedAggregator import FeedAggregator
from feed.newContentCounter import NewContentCounter
from feed.types import ContentFilters, ContentType, FeedQueryOptions
from client.contentStore import InMemoryContentStore
from client.followGraph import CachedFollowGraph, InMemoryFollowGraph
from client.redis import Client as RedisClient
from client.userData import InMemoryAuthorDirectory

# Configure logging
LoggingConfig.configure_logging()
logger = logging.getLogger(__name__)


class FeedServer:
    def __init__(self, aggregator: FeedAggregator, counter: NewContentCounter):
        """Initialize feed server"""
        self.aggregator = aggregator
        self.counter = counter
        self.app = FastAPI(title="Feed Server")
        self.setup_error_handlers()
        self.setup_routes()

    def decode_user_id(self, auth_header: str) -> Optional[str]:
        """Extract the user id ('sub' claim) from a JWT bearer token"""
        if not auth_header or not auth_header.startswith('Bearer '):
            return None

        jwt_token = auth_header.replace('Bearer ', '')
        parts = jwt_token.split('.')
        if len(parts) != 3:
            return None

        # Decode payload
        payload = parts[1]
        payload += '=' * (-len(payload) % 4)

        try:
            decoded = base64.urlsafe_b64decode(payload)
            payload_data = json.loads(decoded)
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Failed to decode JWT: {e}")
            return None

        if not isinstance(payload_data, dict):
            return None
        return payload_data.get('sub')

    def get_user_id(self, request: Request) -> str:
        user_id = self.decode_user_id(request.headers.get('authorization', ''))
        return user_id or request.headers.get('x-user-id', '')

    def setup_error_handlers(self):
        @self.app.exception_handler(FeedError)
        async def handle_feed_error(request: Request, exc: FeedError):
            if exc.status_code >= 500:
                logger.error(f"Feed request failed: {exc.message}")
            else:
                logger.info(f"Rejected feed request: {exc.message}")
            return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

        @self.app.exception_handler(Exception)
        async def handle_unexpected_error(request: Request, exc: Exception):
            logger.exception(f"Unexpected error serving {request.url.path}: {exc}")
            return JSONResponse(
                status_code=500,
                content={'success': False, 'error': 'server_error', 'message': 'Server error'}
            )

    def setup_routes(self):
        """Setup FastAPI routes"""

        @self.app.get("/")
        def root():
            return {"status": "healthy", "service": "feed-server"}

        @self.app.get("/health")
        def health_check():
            return {
                "status": "healthy",
                "failure_policy": self.aggregator.failure_policy,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

        # Registered before /feed/{feed_type} so "new-count" is not taken for a feed type
        @self.app.get("/feed/new-count")
        async def get_new_content_count(
            request: Request,
            feed_type: str = Query('foryou', alias='feedType'),
            tab: str = 'home',
            since: str = ''
        ):
            user_id = self.get_user_id(request)
            count = await self.counter.get_new_content_count(user_id, feed_type, tab, since)
            return {"success": True, "data": {"count": count}}

        @self.app.get("/feed/{feed_type}")
        async def get_feed(
            request: Request,
            feed_type: str,
            tab: str = 'home',
            sort: str = 'newest',
            cursor: Optional[str] = None,
            limit: str = str(DEFAULT_FEED_LIMIT),
            max_age: Optional[float] = Query(None, alias='maxAge'),
            min_engagement: Optional[int] = Query(None, alias='minEngagement'),
            exclude_expired_stories: bool = Query(True, alias='excludeExpiredStories'),
            exclude_closed_polls: bool = Query(True, alias='excludeClosedPolls')
        ):
            user_id = self.get_user_id(request)
            filters = ContentFilters(
                max_age_days=max_age,
                min_engagement=min_engagement,
                exclude_expired_stories=exclude_expired_stories,
                exclude_closed_polls=exclude_closed_polls
            )
            options = FeedQueryOptions.parse(
                user_id=user_id,
                feed_type=feed_type,
                tab=tab,
                sort=sort,
                cursor=cursor,
                limit=limit,
                filters=filters
            )
            response = await self.aggregator.get_feed(options)
            return {"success": True, "data": response.to_dict()}


def build_default_server() -> FeedServer:
    """Wire in-memory stores, plus a Redis follow cache when REDIS_URL is set"""
    sources = build_sources(
        InMemoryContentStore(ContentType.POST),
        InMemoryContentStore(ContentType.POLL),
        InMemoryContentStore(ContentType.STORY)
    )

    upstream_graph = InMemoryFollowGraph()
    follow_graph = upstream_graph
    if os.getenv('REDIS_URL'):
        follow_graph = CachedFollowGraph(RedisClient(), upstream_graph)
        logger.info("Following lists cached in Redis")

    aggregator = FeedAggregator(
        sources,
        follow_graph,
        author_directory=InMemoryAuthorDirectory(follow_graph=upstream_graph)
    )
    counter = NewContentCounter(sources, follow_graph)
    return FeedServer(aggregator, counter)


# Global app instance
feed_server = build_default_server()
app = feed_server.app

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv('PORT', 8080))
    host = os.getenv('HOST', '0.0.0.0')

    logger.info(f"Starting feed server on {host}:{port}")
    uvicorn.run(app, host=host, port=port)

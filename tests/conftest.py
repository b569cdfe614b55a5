"""
Shared fixtures: in-memory stores, follow graph and document builders.
"""
import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from client.contentStore import InMemoryContentStore
from client.followGraph import InMemoryFollowGraph
from client.userData import InMemoryAuthorDirectory
from feed.contentSources import build_sources
from feed.feedAggregator import FeedAggregator
from feed.newContentCounter import NewContentCounter
from feed.types import AuthorProfile, ContentType

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_post(content_id, author='author_a', created_at=NOW, **fields):
    document = {
        '_id': content_id,
        'userId': author,
        'text': f"post {content_id}",
        'createdAt': created_at,
        'reactionsCount': 0,
        'commentsCount': 0,
    }
    document.update(fields)
    return document


def make_poll(content_id, author='author_a', created_at=NOW, **fields):
    # Polls only carry the embedded author snapshot
    document = {
        '_id': content_id,
        'author': {'clerkId': author, 'username': f"{author}_name"},
        'question': f"Question {content_id}?",
        'options': [{'text': 'Yes', 'votesCount': 0}, {'text': 'No', 'votesCount': 0}],
        'status': 'active',
        'createdAt': created_at,
        'reactionsCount': 0,
        'commentsCount': 0,
        'totalVotes': 0,
    }
    document.update(fields)
    return document


def make_story(content_id, author='author_a', created_at=NOW, **fields):
    document = {
        '_id': content_id,
        'userId': author,
        'author': {'clerkId': author, 'username': f"{author}_name"},
        'title': f"Story {content_id}",
        'content': '<p>story</p>',
        'status': 'published',
        'createdAt': created_at,
        'reactionsCount': 0,
        'commentsCount': 0,
    }
    document.update(fields)
    return document


class FeedWorld:
    """Stores, follow graph and engine objects wired together for a test"""

    def __init__(self):
        self.posts = InMemoryContentStore(ContentType.POST)
        self.polls = InMemoryContentStore(ContentType.POLL)
        self.stories = InMemoryContentStore(ContentType.STORY)
        self.follow_graph = InMemoryFollowGraph()
        self.authors = InMemoryAuthorDirectory(follow_graph=self.follow_graph)
        self.sources = build_sources(self.posts, self.polls, self.stories)

    def add_author(self, author_id, username=None, profile_image=None):
        self.authors.add_profile(AuthorProfile(author_id, username or author_id, profile_image))

    def aggregator(self, **kwargs):
        return FeedAggregator(self.sources, self.follow_graph, author_directory=self.authors, **kwargs)

    def counter(self, **kwargs):
        return NewContentCounter(self.sources, self.follow_graph, **kwargs)


@pytest.fixture
def world():
    return FeedWorld()


@pytest.fixture
def hours_ago():
    def _hours_ago(hours):
        return NOW - timedelta(hours=hours)
    return _hours_ago


class BrokenStore:
    """Store whose backend is down"""

    async def find_recent(self, query, limit):
        raise ConnectionError("connection refused")

    async def count(self, query):
        raise ConnectionError("connection refused")

    async def find_by_id(self, content_id):
        raise ConnectionError("connection refused")


class SlowStore(BrokenStore):
    """Store that never answers within a request timeout"""

    async def find_recent(self, query, limit):
        await asyncio.sleep(5)
        return []

    async def count(self, query):
        await asyncio.sleep(5)
        return 0


class CountlessStore(InMemoryContentStore):
    """Serves documents but its count query fails"""

    async def count(self, query):
        raise ConnectionError("count timed out on replica")

"""
Tests for content sources over the in-memory store.
"""
import pytest

from client.contentStore import InMemoryContentStore
from feed.contentSources import ContentQuery, PollSource, PostSource, StorySource
from feed.errors import SourceUnavailable
from feed.types import ContentType

from conftest import NOW, BrokenStore, make_poll, make_post, make_story


@pytest.mark.asyncio
async def test_post_mapping_defaults_missing_counters():
    document = make_post('p1', author='u1')
    del document['reactionsCount']
    document['commentsCount'] = None
    source = PostSource(InMemoryContentStore(ContentType.POST, [document]))

    items = await source.fetch(ContentQuery(), 10)

    assert len(items) == 1
    item = items[0]
    assert item.type == ContentType.POST
    assert item.author_id == 'u1'
    assert item.created_at == NOW
    assert item.reactions_count == 0
    assert item.comments_count == 0
    assert item.total_votes == 0


@pytest.mark.asyncio
async def test_poll_carries_total_votes_and_embedded_author():
    source = PollSource(InMemoryContentStore(ContentType.POLL, [make_poll('q1', author='u2', totalVotes=12)]))

    items = await source.fetch(ContentQuery(), 10)

    assert items[0].total_votes == 12
    assert items[0].author_id == 'u2'
    assert items[0].total_engagement == 12


@pytest.mark.asyncio
async def test_story_source_only_returns_published():
    store = InMemoryContentStore(ContentType.STORY, [
        make_story('s1'),
        make_story('s2', status='draft'),
        make_story('s3', status='pending'),
    ])
    source = StorySource(store)

    items = await source.fetch(ContentQuery(), 10)

    assert [item.id for item in items] == ['s1']
    assert await source.count(ContentQuery()) == 1


@pytest.mark.asyncio
async def test_fetch_is_newest_first_and_limited(hours_ago):
    store = InMemoryContentStore(ContentType.POST, [
        make_post('old', created_at=hours_ago(5)),
        make_post('new', created_at=hours_ago(1)),
        make_post('mid', created_at=hours_ago(3)),
    ])

    items = await PostSource(store).fetch(ContentQuery(), 2)

    assert [item.id for item in items] == ['new', 'mid']


@pytest.mark.asyncio
async def test_author_restriction():
    store = InMemoryContentStore(ContentType.POST, [
        make_post('p1', author='u1'),
        make_post('p2', author='u2'),
    ])
    source = PostSource(store)

    included = await source.fetch(ContentQuery(author_ids=frozenset({'u1'})), 10)
    excluded = await source.fetch(ContentQuery(exclude_author_ids=frozenset({'u1'})), 10)

    assert [item.id for item in included] == ['p1']
    assert [item.id for item in excluded] == ['p2']


@pytest.mark.asyncio
async def test_store_failure_becomes_source_unavailable():
    source = PollSource(BrokenStore())

    with pytest.raises(SourceUnavailable) as exc_info:
        await source.fetch(ContentQuery(), 10)
    assert exc_info.value.source == 'poll'
    assert isinstance(exc_info.value.cause, ConnectionError)

    with pytest.raises(SourceUnavailable):
        await source.count(ContentQuery())
    with pytest.raises(SourceUnavailable):
        await source.get('q1')


@pytest.mark.asyncio
async def test_get_by_id():
    source = PostSource(InMemoryContentStore(ContentType.POST, [make_post('p1')]))

    item = await source.get('p1')

    assert item.position.id == 'p1'
    assert await source.get('missing') is None


def test_store_rejects_documents_without_timestamp():
    store = InMemoryContentStore(ContentType.POST)
    assert store.add_content(make_post('p1')) is True
    assert store.add_content({'_id': 'p2', 'text': 'no date'}) is False
    assert store.add_content(make_post('p3', created_at='not a date')) is False
    assert list(store.contents) == ['p1']


class LooseStore(InMemoryContentStore):
    """Store whose query results include values that are not documents"""

    async def find_recent(self, query, limit):
        return ['stray', None, 42] + list(await super().find_recent(query, limit))


@pytest.mark.asyncio
async def test_non_mapping_documents_are_skipped():
    source = PostSource(LooseStore(ContentType.POST, [make_post('p1')]))

    items = await source.fetch(ContentQuery(), 10)

    assert [item.id for item in items] == ['p1']

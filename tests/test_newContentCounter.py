from datetime import timedelta

import pytest

from feed.contentSources import build_sources
from feed.cursorCodec import encode_cursor
from feed.errors import InvalidCursor, InvalidQuery, SourceUnavailable
from feed.newContentCounter import NewContentCounter
from feed.types import ContentType, CursorPosition

from conftest import NOW, SlowStore, make_poll, make_post, make_story


def _seed(world, hours_ago):
    world.posts.add_content(make_post('seen', author='friend', created_at=hours_ago(2)))
    world.posts.add_content(make_post('older', created_at=hours_ago(3)))
    world.posts.add_content(make_post('p_new', author='friend', created_at=hours_ago(1)))
    world.polls.add_content(make_poll('q_new', created_at=NOW - timedelta(minutes=30)))
    world.polls.add_content(make_poll('q_closed', status='closed', created_at=NOW - timedelta(minutes=10)))
    world.polls.add_content(make_poll('q_lapsed', created_at=NOW - timedelta(minutes=20),
                                      expiresAt=(NOW - timedelta(minutes=1)).isoformat()))
    world.stories.add_content(make_story('s_draft', status='draft', created_at=NOW - timedelta(minutes=8)))
    world.stories.add_content(make_story('s_new', author='friend', created_at=NOW - timedelta(minutes=5)))


@pytest.mark.asyncio
async def test_counts_qualifying_items_newer_than_marker(world, hours_ago):
    _seed(world, hours_ago)

    count = await world.counter().get_new_content_count('viewer', 'foryou', 'home', 'seen', now=NOW)

    assert count == 3


@pytest.mark.asyncio
async def test_marker_may_be_cursor_token(world, hours_ago):
    _seed(world, hours_ago)
    marker = encode_cursor(CursorPosition(hours_ago(2), ContentType.POST, 'seen'))

    count = await world.counter().get_new_content_count('viewer', 'foryou', 'home', marker, now=NOW)

    assert count == 3


@pytest.mark.asyncio
async def test_tab_restricts_count(world, hours_ago):
    _seed(world, hours_ago)

    count = await world.counter().get_new_content_count('viewer', 'foryou', 'polls', 'seen', now=NOW)

    assert count == 1


@pytest.mark.asyncio
async def test_following_count_only_followed_authors(world, hours_ago):
    _seed(world, hours_ago)
    world.follow_graph.follow('viewer', 'friend')

    count = await world.counter().get_new_content_count('viewer', 'following', 'home', 'seen', now=NOW)

    assert count == 2


@pytest.mark.asyncio
async def test_following_count_without_follows_is_zero(world, hours_ago):
    _seed(world, hours_ago)

    assert await world.counter().get_new_content_count('viewer', 'following', 'home', 'seen', now=NOW) == 0


@pytest.mark.asyncio
async def test_newest_marker_counts_zero(world, hours_ago):
    _seed(world, hours_ago)

    assert await world.counter().get_new_content_count('viewer', 'foryou', 'home', 's_new', now=NOW) == 0


@pytest.mark.asyncio
async def test_unknown_marker_rejected(world):
    with pytest.raises(InvalidQuery):
        await world.counter().get_new_content_count('viewer', 'foryou', 'home', 'nope', now=NOW)


@pytest.mark.asyncio
async def test_missing_marker_rejected(world):
    with pytest.raises(InvalidQuery):
        await world.counter().get_new_content_count('viewer', 'foryou', 'home', '', now=NOW)


@pytest.mark.asyncio
async def test_corrupt_cursor_marker_rejected(world):
    with pytest.raises(InvalidCursor):
        await world.counter().get_new_content_count('viewer', 'foryou', 'home', 'c1.@@@', now=NOW)


@pytest.mark.asyncio
async def test_unknown_tab_rejected(world):
    with pytest.raises(InvalidQuery):
        await world.counter().get_new_content_count('viewer', 'foryou', 'videos', 'seen', now=NOW)


@pytest.mark.asyncio
async def test_slow_source_count_times_out(world, hours_ago):
    world.polls.add_content(make_poll('q_seen', created_at=hours_ago(2)))
    sources = build_sources(SlowStore(), world.polls, world.stories)
    counter = NewContentCounter(sources, world.follow_graph, source_timeout=0.05)
    marker = encode_cursor(CursorPosition(hours_ago(2), ContentType.POLL, 'q_seen'))

    with pytest.raises(SourceUnavailable) as exc_info:
        await counter.get_new_content_count('viewer', 'foryou', 'home', marker, now=NOW)
    assert exc_info.value.source == 'post'


@pytest.mark.asyncio
async def test_count_within_timeout_is_unaffected(world, hours_ago):
    _seed(world, hours_ago)
    counter = NewContentCounter(world.sources, world.follow_graph, source_timeout=1)

    assert await counter.get_new_content_count('viewer', 'foryou', 'home', 'seen', now=NOW) == 3

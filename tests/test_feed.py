"""Tests for the meme feed client."""

import asyncio
import random

import httpx
import pytest

from conftest import make_item
from feed import (
    FeedClient,
    FeedOutcome,
    PAGE_SIZE,
    dedupe,
    is_content_appropriate,
    is_static_image,
    load_feed_page,
)
from store import MemoryStore


def _meme(post_id, title="A funny cat", url=None, **extra):
    meme = {
        "postLink": f"https://redd.it/{post_id}",
        "subreddit": "memes",
        "title": title,
        "url": url or f"https://i.redd.it/{post_id}.png",
        "nsfw": False,
        "author": "poster",
        "ups": 42,
    }
    meme.update(extra)
    return meme


def _reddit_listing(*posts):
    return {"data": {"children": [{"data": post} for post in posts], "after": None}}


def _reddit_post(post_id, title="Reddit meme", **extra):
    post = {
        "id": post_id,
        "title": title,
        "url": f"https://i.imgur.com/{post_id}.jpg",
        "subreddit": "memes",
        "permalink": f"/r/memes/comments/{post_id}/",
        "ups": 7,
        "author": "redditor",
        "created_utc": 1_700_000_000,
        "over_18": False,
        "is_video": False,
    }
    post.update(extra)
    return post


def _client(handler, seed=1):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FeedClient(
        http,
        rng=random.Random(seed),
        meme_api_url="https://meme-api.test/gimme",
        reddit_api_url="https://reddit.test",
    )


def _fetch(handler, page=0, seed=1):
    async def _run():
        client = _client(handler, seed)
        try:
            return await client.fetch_page(page)
        finally:
            await client._client.aclose()

    return asyncio.run(_run())


def test_primary_source_is_filtered_and_deduplicated():
    memes = [
        _meme("a1"),
        _meme("a2", title="NSFW content"),
        _meme("a3", subreddit="MatureHumor"),
        _meme("a4", url="https://v.redd.it/a4"),
        _meme("a1", title="Duplicate of a1"),
        _meme("a5", nsfw=True),
        _meme("a6", title="Hate Mondays"),
        _meme("a7"),
    ]
    calls = []

    def handler(request):
        calls.append(request.url.host)
        return httpx.Response(200, json={"count": len(memes), "memes": memes})

    result = _fetch(handler)

    assert result.outcome is FeedOutcome.FETCHED
    assert sorted(item.id for item in result.items) == ["a1", "a7"]
    assert next(i for i in result.items if i.id == "a1").title == "A funny cat"
    assert all(item.subreddit == "r/memes" for item in result.items)
    assert calls == ["meme-api.test"]


def test_output_is_truncated_and_unique():
    memes = [_meme(f"p{i}") for i in range(30)] + [_meme("p3")]

    result = _fetch(lambda request: httpx.Response(200, json={"memes": memes}))

    ids = [item.id for item in result.items]
    assert len(ids) == PAGE_SIZE
    assert len(set(ids)) == PAGE_SIZE


def test_shuffle_is_driven_by_the_rng():
    memes = [_meme(f"s{i}") for i in range(10)]

    def handler(request):
        return httpx.Response(200, json={"memes": memes})

    first = [i.id for i in _fetch(handler, seed=3).items]
    again = [i.id for i in _fetch(handler, seed=3).items]
    assert first == again
    assert sorted(first) == sorted(m["postLink"].rsplit("/", 1)[-1] for m in memes)


def test_secondary_sources_used_when_primary_fails():
    requested = []

    def handler(request):
        requested.append(request.url.path)
        if request.url.host == "meme-api.test":
            return httpx.Response(503, json={"message": "down"})
        if request.url.path == "/r/memes/hot.json":
            return httpx.Response(
                200,
                json=_reddit_listing(
                    _reddit_post("r1"),
                    _reddit_post("r2", over_18=True),
                    _reddit_post("r3", is_video=True),
                    _reddit_post("r4", title="Explicit joke"),
                ),
            )
        raise httpx.ConnectError("unreachable", request=request)

    result = _fetch(handler)

    assert result.outcome is FeedOutcome.FETCHED
    assert [item.id for item in result.items] == ["r1"]
    item = result.items[0]
    assert item.permalink == "https://reddit.com/r/memes/comments/r1/"
    assert item.created == 1_700_000_000_000
    assert requested == ["/gimme/20", "/r/memes/hot.json", "/r/wholesomememes/hot.json"]
    assert [r.ok for r in result.reports] == [False, True, False]


def test_total_failure_returns_placeholders():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    result = _fetch(handler, page=2)

    assert result.outcome is FeedOutcome.PLACEHOLDER
    assert result.is_placeholder
    assert [item.id for item in result.items] == ["demo1", "demo2", "demo3"]
    assert result.page_index == 2
    assert len(result.reports) == 3
    assert all(report.error for report in result.reports)


def test_malformed_payloads_count_as_failures():
    def handler(request):
        if request.url.host == "meme-api.test":
            return httpx.Response(200, text="<html>not json</html>")
        return httpx.Response(200, json={"unexpected": True})

    result = _fetch(handler)

    assert result.outcome is FeedOutcome.PLACEHOLDER


def test_load_feed_page_caches_fetched_items():
    memes = [_meme("c1"), _meme("c2")]

    async def _run():
        store = MemoryStore()
        await store.initialize()
        client = _client(lambda request: httpx.Response(200, json={"memes": memes}))
        result = await load_feed_page(client, store, 0)
        await client._client.aclose()
        return result, await store.get_media_items(20, 0)

    result, cached = asyncio.run(_run())
    assert result.outcome is FeedOutcome.FETCHED
    assert sorted(m.id for m in cached) == ["c1", "c2"]


def test_load_feed_page_prefers_cache_over_placeholders():
    def offline(request):
        raise httpx.ConnectError("offline", request=request)

    async def _run():
        store = MemoryStore()
        await store.initialize()
        await store.put_media_items([make_item("old1"), make_item("old2")])
        client = _client(offline)
        cached_page = await load_feed_page(client, store, 0)
        empty_page = await load_feed_page(client, store, 1)
        await client._client.aclose()
        return cached_page, empty_page, await store.get_media_item("demo1")

    cached_page, empty_page, stored_demo = asyncio.run(_run())
    assert cached_page.outcome is FeedOutcome.CACHED
    assert [m.id for m in cached_page.items] == ["old1", "old2"]
    assert empty_page.outcome is FeedOutcome.PLACEHOLDER
    assert stored_demo is not None


def test_load_feed_page_survives_an_unusable_store():
    memes = [_meme("u1")]

    async def _run():
        store = MemoryStore()  # never initialized
        client = _client(lambda request: httpx.Response(200, json={"memes": memes}))
        result = await load_feed_page(client, store, 0)
        await client._client.aclose()
        return result

    assert [m.id for m in asyncio.run(_run()).items] == ["u1"]


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://example.com/cat.JPG", True),
        ("https://example.com/cat.webp", True),
        ("https://i.redd.it/abc", True),
        ("https://imgur.com/gallery/xyz", True),
        ("https://v.redd.it/clip", False),
        ("https://example.com/clip.mp4", False),
    ],
)
def test_is_static_image(url, expected):
    assert is_static_image(url) is expected


def test_blocklist_checks_title_and_subreddit():
    assert is_content_appropriate("Cute dog", "r/aww")
    assert not is_content_appropriate("Cute dog", "r/nsfw_pets")
    assert not is_content_appropriate("DISTURBING news", "r/memes")


def test_dedupe_keeps_first_occurrence():
    items = [make_item("x", title="first"), make_item("y"), make_item("x", title="second")]

    assert [(i.id, i.title) for i in dedupe(items)] == [("x", "first"), ("y", "Meme y")]

"""Meme feed: fetch, filter, deduplicate and shuffle a page of images.

The Meme API is the primary source; when it fails or yields nothing usable,
the hot listings of the first two English subreddits are tried. Source errors
are logged and reported in the :class:`FeedResult`, never raised. When every
source comes back empty the result is the fixed placeholder page.
"""

from __future__ import annotations

import enum
import logging
import os
import random
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, List, Optional
from uuid import uuid4

import httpx

from env_validation import get_env_float
from errors import AirMemsError
from schemas import MediaItem, now_ms

logger = logging.getLogger(__name__)

PAGE_SIZE = 20
REDDIT_LISTING_LIMIT = 25
SECONDARY_SOURCE_LIMIT = 2

MEME_API_URL = os.getenv("MEME_API_URL", "https://meme-api.com/gimme")
REDDIT_API_URL = os.getenv("REDDIT_API_URL", "https://www.reddit.com")

ENGLISH_SUBREDDITS = (
    "memes",
    "wholesomememes",
    "ProgrammerHumor",
    "EnglishMemes",
    "educationalmemes",
)

FILTER_KEYWORDS = (
    "nsfw", "adult", "sexual", "violence", "hate", "offensive",
    "inappropriate", "explicit", "mature", "disturbing",
)

_IMAGE_EXTENSION = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
_IMAGE_HOSTS = ("i.redd.it", "imgur.com")


class FeedOutcome(str, enum.Enum):
    FETCHED = "fetched"
    CACHED = "cached"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class SourceReport:
    name: str
    item_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FeedResult:
    items: List[MediaItem]
    outcome: FeedOutcome
    page_index: int = 0
    reports: List[SourceReport] = field(default_factory=list)

    @property
    def is_placeholder(self) -> bool:
        return self.outcome is FeedOutcome.PLACEHOLDER


def is_static_image(url: str) -> bool:
    return bool(_IMAGE_EXTENSION.search(url)) or any(host in url for host in _IMAGE_HOSTS)


def is_content_appropriate(title: str, subreddit: str) -> bool:
    text = f"{title} {subreddit}".lower()
    return not any(keyword in text for keyword in FILTER_KEYWORDS)


def filter_items(items: Iterable[MediaItem]) -> List[MediaItem]:
    return [
        item
        for item in items
        if is_static_image(item.url) and is_content_appropriate(item.title, item.subreddit)
    ]


def dedupe(items: Iterable[MediaItem]) -> List[MediaItem]:
    """Drop repeated ids, keeping the first occurrence."""
    seen: set[str] = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


def shuffle(items: List[MediaItem], rng: random.Random) -> None:
    """In-place Fisher-Yates shuffle."""
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]


def placeholder_items() -> List[MediaItem]:
    created = now_ms()
    return [
        MediaItem(
            id="demo1",
            title="When you finally understand a complex English idiom",
            url="https://images.unsplash.com/photo-1517077304055-6e89abbf09b0?ixlib=rb-4.0.3&auto=format&fit=crop&w=600&h=400",
            subreddit="r/EnglishLearning",
            permalink="https://reddit.com/r/EnglishLearning/demo1",
            upvotes=1234,
            author="learner123",
            created=created,
        ),
        MediaItem(
            id="demo2",
            title="Me trying to use 'whom' correctly in a sentence",
            url="https://images.unsplash.com/photo-1516131206008-dd041a9764fd?ixlib=rb-4.0.3&auto=format&fit=crop&w=600&h=400",
            subreddit="r/EnglishMemes",
            permalink="https://reddit.com/r/EnglishMemes/demo2",
            upvotes=987,
            author="grammar_geek",
            created=created,
        ),
        MediaItem(
            id="demo3",
            title="When someone asks if you speak English and you say 'yes' but then they use slang",
            url="https://images.unsplash.com/photo-1616347004137-2ed2eb9f6fce?ixlib=rb-4.0.3&auto=format&fit=crop&w=600&h=400",
            subreddit="r/memes",
            permalink="https://reddit.com/r/memes/demo3",
            upvotes=2345,
            author="confusedlearner",
            created=created,
        ),
    ]


def _parse_meme_api(payload: Any) -> List[MediaItem]:
    memes = payload.get("memes") if isinstance(payload, dict) else None
    if not isinstance(memes, list):
        memes = [payload]
    items = []
    for meme in memes:
        if not isinstance(meme, dict):
            continue
        if not meme.get("url") or not meme.get("title") or meme.get("nsfw"):
            continue
        subreddit = str(meme.get("subreddit") or "memes")
        if not subreddit.startswith("r/"):
            subreddit = f"r/{subreddit}"
        post_link = meme.get("postLink") or ""
        items.append(
            MediaItem(
                id=post_link.rstrip("/").rsplit("/", 1)[-1] or uuid4().hex[:10],
                title=str(meme["title"]),
                url=str(meme["url"]),
                subreddit=subreddit,
                permalink=post_link or "#",
                upvotes=int(meme.get("ups") or 0),
                author=str(meme.get("author") or "unknown"),
                created=now_ms(),
            )
        )
    return items


def _parse_reddit_listing(payload: Any) -> List[MediaItem]:
    items = []
    for child in payload["data"]["children"]:
        post = child["data"]
        if post.get("over_18") or post.get("is_video"):
            continue
        items.append(
            MediaItem(
                id=str(post["id"]),
                title=str(post["title"]),
                url=str(post["url"]),
                subreddit=f"r/{post['subreddit']}",
                permalink=f"https://reddit.com{post['permalink']}",
                upvotes=int(post.get("ups") or 0),
                author=str(post.get("author") or "unknown"),
                created=int(float(post.get("created_utc") or 0) * 1000),
            )
        )
    return items


class FeedClient:
    """Produces pages of feed items from the remote sources."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        rng: Optional[random.Random] = None,
        meme_api_url: str = MEME_API_URL,
        reddit_api_url: str = REDDIT_API_URL,
        timeout: Optional[float] = None,
    ):
        if timeout is None:
            timeout = get_env_float("FEED_TIMEOUT", 10.0)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": "airmems-feed/0.1"},
            follow_redirects=True,
        )
        self._rng = rng or random.Random()
        self.meme_api_url = meme_api_url.rstrip("/")
        self.reddit_api_url = reddit_api_url.rstrip("/")

    async def __aenter__(self) -> "FeedClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_json(self, url: str, params: Optional[dict] = None) -> Any:
        response = await self._client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def fetch_meme_api(self) -> List[MediaItem]:
        payload = await self._get_json(f"{self.meme_api_url}/{PAGE_SIZE}")
        return _parse_meme_api(payload)

    async def fetch_subreddit(self, subreddit: str) -> List[MediaItem]:
        payload = await self._get_json(
            f"{self.reddit_api_url}/r/{subreddit}/hot.json",
            params={"limit": REDDIT_LISTING_LIMIT},
        )
        return _parse_reddit_listing(payload)

    async def _try_source(
        self, name: str, fetch: Callable[[], Awaitable[List[MediaItem]]]
    ) -> tuple[List[MediaItem], SourceReport]:
        try:
            items = filter_items(await fetch())
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Feed source %s failed: %s", name, exc)
            return [], SourceReport(name=name, error=str(exc) or type(exc).__name__)
        logger.debug("Feed source %s yielded %d items", name, len(items))
        return items, SourceReport(name=name, item_count=len(items))

    async def fetch_page(self, page_index: int = 0) -> FeedResult:
        reports: List[SourceReport] = []
        collected: List[MediaItem] = []

        items, report = await self._try_source("meme-api", self.fetch_meme_api)
        collected.extend(items)
        reports.append(report)

        if not collected:
            for subreddit in ENGLISH_SUBREDDITS[:SECONDARY_SOURCE_LIMIT]:
                items, report = await self._try_source(
                    f"r/{subreddit}", lambda name=subreddit: self.fetch_subreddit(name)
                )
                collected.extend(items)
                reports.append(report)

        if not collected:
            logger.warning(
                "All feed sources came back empty for page %d; serving placeholders", page_index
            )
            return FeedResult(
                items=placeholder_items(),
                outcome=FeedOutcome.PLACEHOLDER,
                page_index=page_index,
                reports=reports,
            )

        unique = dedupe(collected)
        shuffle(unique, self._rng)
        return FeedResult(
            items=unique[:PAGE_SIZE],
            outcome=FeedOutcome.FETCHED,
            page_index=page_index,
            reports=reports,
        )


async def load_feed_page(client: FeedClient, store, page_index: int = 0) -> FeedResult:
    """Fetch a page and cache it, preferring cached items over placeholders."""
    result = await client.fetch_page(page_index)

    if result.is_placeholder:
        try:
            cached = await store.get_media_items(PAGE_SIZE, page_index * PAGE_SIZE)
        except AirMemsError as exc:
            logger.warning("Reading cached feed page %d failed: %s", page_index, exc)
            cached = []
        if cached:
            return FeedResult(
                items=cached,
                outcome=FeedOutcome.CACHED,
                page_index=page_index,
                reports=result.reports,
            )

    try:
        await store.put_media_items(result.items)
    except AirMemsError as exc:
        logger.warning("Caching feed page %d failed: %s", page_index, exc)
    return result


__all__ = [
    "PAGE_SIZE",
    "ENGLISH_SUBREDDITS",
    "FILTER_KEYWORDS",
    "FeedOutcome",
    "SourceReport",
    "FeedResult",
    "FeedClient",
    "is_static_image",
    "is_content_appropriate",
    "filter_items",
    "dedupe",
    "shuffle",
    "placeholder_items",
    "load_feed_page",
]

"""Local persistence for memes, lessons, progress, bookmarks and explanations.

Each collection is a key-value table of JSON documents keyed by one field of
the record. Stores are constructed explicitly and handed to their callers;
``initialize()`` must be awaited before any other operation.

Two implementations share the contract:

* :class:`SQLiteStore` keeps documents in a local SQLite file and runs every
  statement on a worker thread through :func:`asyncio.to_thread`.
* :class:`MemoryStore` keeps documents in dictionaries; it is used for tests
  and for sessions that should not touch the disk.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import sqlite3
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from db_pool import SQLiteConnectionPool
from errors import StorageUnavailable, StoreNotInitialized
from schemas import (
    Explanation,
    Lesson,
    MediaItem,
    ProgressRecord,
    SavedLessonMarker,
    now_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATH = "airmems.db"


class Collection:
    MEMES = "memes"
    LESSONS = "lessons"
    USER_PROGRESS = "user_progress"
    SAVED_LESSONS = "saved_lessons"
    EXPLANATIONS = "explanations"


# Collections holding learner data; memes are a re-fetchable cache.
USER_DATA_COLLECTIONS: Tuple[str, ...] = (
    Collection.LESSONS,
    Collection.SAVED_LESSONS,
    Collection.USER_PROGRESS,
    Collection.EXPLANATIONS,
)

# collection -> (key field, indexed fields)
_SCHEMA: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    Collection.MEMES: ("id", ("subreddit",)),
    Collection.LESSONS: ("id", ("memeId",)),
    Collection.USER_PROGRESS: ("lessonId", ()),
    Collection.SAVED_LESSONS: ("lessonId", ()),
    Collection.EXPLANATIONS: ("id", ("memeId",)),
}

_INDEX_COLUMNS = {"subreddit": "subreddit", "memeId": "meme_id"}


class BaseStore:
    """Typed async operations over the raw document primitives.

    Subclasses implement the ``_open``/``_close`` lifecycle and the
    synchronous document primitives; everything public is ``async``.
    """

    def __init__(self) -> None:
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def __aenter__(self) -> "BaseStore":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -------------- lifecycle --------------
    async def initialize(self) -> None:
        if self._initialized:
            return
        await self._open()
        self._initialized = True
        logger.debug("%s initialized", type(self).__name__)

    async def close(self) -> None:
        if not self._initialized:
            return
        self._initialized = False
        await self._close()

    async def _open(self) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        raise NotImplementedError

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        if not self._initialized:
            raise StoreNotInitialized()
        return await asyncio.to_thread(func, *args)

    # -------------- document primitives --------------
    def _put(self, collection: str, document: Dict[str, Any]) -> None:
        raise NotImplementedError

    def _get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def _slice(self, collection: str, limit: Optional[int], offset: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def _by_index(self, collection: str, field: str, value: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def _delete(self, collection: str, key: str) -> None:
        raise NotImplementedError

    def _clear(self, collections: Sequence[str]) -> None:
        raise NotImplementedError

    # -------------- memes --------------
    async def put_media_items(self, items: Iterable[MediaItem]) -> None:
        """Upsert each item by id.

        Items are written one by one; a failure part-way leaves the earlier
        items stored.
        """
        for item in items:
            await self._run(self._put, Collection.MEMES, item.to_wire())

    async def get_media_items(self, limit: int = 20, offset: int = 0) -> List[MediaItem]:
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be non-negative")
        docs = await self._run(self._slice, Collection.MEMES, limit, offset)
        return [MediaItem.model_validate(doc) for doc in docs]

    async def get_media_item(self, media_id: str) -> Optional[MediaItem]:
        doc = await self._run(self._get, Collection.MEMES, media_id)
        return MediaItem.model_validate(doc) if doc is not None else None

    async def get_media_items_by_subreddit(self, subreddit: str) -> List[MediaItem]:
        docs = await self._run(self._by_index, Collection.MEMES, "subreddit", subreddit)
        return [MediaItem.model_validate(doc) for doc in docs]

    # -------------- lessons --------------
    async def put_lesson(self, lesson: Lesson) -> None:
        await self._run(self._put, Collection.LESSONS, lesson.to_wire())

    async def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        doc = await self._run(self._get, Collection.LESSONS, lesson_id)
        return Lesson.model_validate(doc) if doc is not None else None

    async def get_all_lessons(self) -> List[Lesson]:
        """Return every lesson, unsorted; callers order by ``created_at``."""
        docs = await self._run(self._slice, Collection.LESSONS, None, 0)
        return [Lesson.model_validate(doc) for doc in docs]

    async def get_lessons_for_media(self, media_id: str) -> List[Lesson]:
        docs = await self._run(self._by_index, Collection.LESSONS, "memeId", media_id)
        return [Lesson.model_validate(doc) for doc in docs]

    async def delete_lesson(self, lesson_id: str) -> None:
        await self._run(self._delete, Collection.LESSONS, lesson_id)

    # -------------- progress --------------
    async def put_progress(self, record: ProgressRecord) -> None:
        await self._run(self._put, Collection.USER_PROGRESS, record.to_wire())

    async def get_progress(self, lesson_id: str) -> Optional[ProgressRecord]:
        doc = await self._run(self._get, Collection.USER_PROGRESS, lesson_id)
        return ProgressRecord.model_validate(doc) if doc is not None else None

    async def get_all_progress(self) -> List[ProgressRecord]:
        docs = await self._run(self._slice, Collection.USER_PROGRESS, None, 0)
        return [ProgressRecord.model_validate(doc) for doc in docs]

    # -------------- saved lessons --------------
    async def mark_lesson_saved(self, lesson_id: str) -> SavedLessonMarker:
        marker = SavedLessonMarker(lesson_id=lesson_id, saved_at=now_ms())
        await self._run(self._put, Collection.SAVED_LESSONS, marker.to_wire())
        return marker

    async def unmark_lesson_saved(self, lesson_id: str) -> None:
        await self._run(self._delete, Collection.SAVED_LESSONS, lesson_id)

    async def get_saved_lesson_markers(self) -> List[SavedLessonMarker]:
        docs = await self._run(self._slice, Collection.SAVED_LESSONS, None, 0)
        return [SavedLessonMarker.model_validate(doc) for doc in docs]

    # -------------- explanations --------------
    async def put_explanation(self, explanation: Explanation) -> None:
        await self._run(self._put, Collection.EXPLANATIONS, explanation.to_wire())

    async def get_explanations_for_media(self, media_id: str) -> List[Explanation]:
        docs = await self._run(self._by_index, Collection.EXPLANATIONS, "memeId", media_id)
        return [Explanation.model_validate(doc) for doc in docs]

    # -------------- maintenance --------------
    async def clear_all(self) -> None:
        """Delete all learner data; cached memes are kept."""
        await self._run(self._clear, USER_DATA_COLLECTIONS)
        logger.info("Cleared collections: %s", ", ".join(USER_DATA_COLLECTIONS))


class SQLiteStore(BaseStore):
    """Store backed by a local SQLite file."""

    def __init__(self, path: str = DEFAULT_STORE_PATH, *, max_connections: int = 5):
        super().__init__()
        self.path = str(path)
        # Every ":memory:" connection is a separate database.
        self._max_connections = 1 if self.path == ":memory:" else max_connections
        self._pool: Optional[SQLiteConnectionPool] = None

    async def _open(self) -> None:
        self._pool = SQLiteConnectionPool(self.path, max_connections=self._max_connections)
        try:
            await asyncio.to_thread(self._init_tables)
        except sqlite3.Error as exc:
            self._pool.close_all()
            self._pool = None
            raise StorageUnavailable(f"Cannot initialize store at {self.path}: {exc}") from exc
        except StorageUnavailable:
            self._pool = None
            raise

    async def _close(self) -> None:
        if self._pool is not None:
            self._pool.close_all()
            self._pool = None

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await super()._run(func, *args)
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Store operation failed: {exc}") from exc

    def _init_tables(self) -> None:
        assert self._pool is not None
        with self._pool.get_connection() as con:
            for collection, (_, indexes) in _SCHEMA.items():
                index_columns = "".join(f",\n  {_INDEX_COLUMNS[f]} TEXT" for f in indexes)
                con.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {collection} (
                      position INTEGER PRIMARY KEY AUTOINCREMENT,
                      key      TEXT NOT NULL UNIQUE,
                      body     TEXT NOT NULL{index_columns}
                    )
                    """
                )
                for field in indexes:
                    column = _INDEX_COLUMNS[field]
                    con.execute(
                        f"CREATE INDEX IF NOT EXISTS idx_{collection}_{column} "
                        f"ON {collection}({column})"
                    )
            con.commit()

    def _put(self, collection: str, document: Dict[str, Any]) -> None:
        key_field, indexes = _SCHEMA[collection]
        columns = ["key", "body", *(_INDEX_COLUMNS[f] for f in indexes)]
        values = [document[key_field], json.dumps(document, ensure_ascii=False)]
        values.extend(document.get(f) for f in indexes)
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns[1:])
        assert self._pool is not None
        with self._pool.get_connection() as con:
            # The conflict branch keeps the row's position, so an overwritten
            # record stays where it was first inserted.
            con.execute(
                f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders}) "
                f"ON CONFLICT(key) DO UPDATE SET {updates}",
                values,
            )
            con.commit()

    def _get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        assert self._pool is not None
        with self._pool.get_connection() as con:
            row = con.execute(f"SELECT body FROM {collection} WHERE key = ?", (key,)).fetchone()
        return json.loads(row["body"]) if row else None

    def _slice(self, collection: str, limit: Optional[int], offset: int) -> List[Dict[str, Any]]:
        assert self._pool is not None
        with self._pool.get_connection() as con:
            rows = con.execute(
                f"SELECT body FROM {collection} ORDER BY position LIMIT ? OFFSET ?",
                (-1 if limit is None else limit, offset),
            ).fetchall()
        return [json.loads(row["body"]) for row in rows]

    def _by_index(self, collection: str, field: str, value: str) -> List[Dict[str, Any]]:
        column = _INDEX_COLUMNS[field]
        assert self._pool is not None
        with self._pool.get_connection() as con:
            rows = con.execute(
                f"SELECT body FROM {collection} WHERE {column} = ? ORDER BY position",
                (value,),
            ).fetchall()
        return [json.loads(row["body"]) for row in rows]

    def _delete(self, collection: str, key: str) -> None:
        assert self._pool is not None
        with self._pool.get_connection() as con:
            con.execute(f"DELETE FROM {collection} WHERE key = ?", (key,))
            con.commit()

    def _clear(self, collections: Sequence[str]) -> None:
        assert self._pool is not None
        with self._pool.get_connection() as con:
            for collection in collections:
                con.execute(f"DELETE FROM {collection}")
            con.commit()


class MemoryStore(BaseStore):
    """Dictionary-backed store with the same contract as :class:`SQLiteStore`."""

    def __init__(self) -> None:
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def _open(self) -> None:
        for collection in _SCHEMA:
            self._data.setdefault(collection, {})

    async def _close(self) -> None:
        return None

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        if not self._initialized:
            raise StoreNotInitialized()
        return func(*args)

    def _put(self, collection: str, document: Dict[str, Any]) -> None:
        key_field, _ = _SCHEMA[collection]
        # dict assignment to an existing key keeps its insertion position
        self._data[collection][document[key_field]] = copy.deepcopy(document)

    def _get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        doc = self._data[collection].get(key)
        return copy.deepcopy(doc) if doc is not None else None

    def _slice(self, collection: str, limit: Optional[int], offset: int) -> List[Dict[str, Any]]:
        docs = list(self._data[collection].values())
        end = None if limit is None else offset + limit
        return copy.deepcopy(docs[offset:end])

    def _by_index(self, collection: str, field: str, value: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._data[collection].values() if doc.get(field) == value]

    def _delete(self, collection: str, key: str) -> None:
        self._data[collection].pop(key, None)

    def _clear(self, collections: Sequence[str]) -> None:
        for collection in collections:
            self._data[collection].clear()


def open_store(path: Optional[str] = None) -> BaseStore:
    """Build an uninitialized store for ``path`` (default ``STORE_PATH``).

    ``":memory:"`` selects the in-memory implementation.
    """
    target = path or os.getenv("STORE_PATH") or DEFAULT_STORE_PATH
    if target == ":memory:":
        return MemoryStore()
    return SQLiteStore(target)


__all__ = [
    "Collection",
    "USER_DATA_COLLECTIONS",
    "BaseStore",
    "SQLiteStore",
    "MemoryStore",
    "open_store",
    "DEFAULT_STORE_PATH",
]

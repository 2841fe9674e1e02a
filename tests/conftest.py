import asyncio
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas import Lesson, MediaItem, QuizQuestion, VocabularyItem  # noqa: E402
from store import MemoryStore, SQLiteStore  # noqa: E402


def make_item(item_id: str, **overrides) -> MediaItem:
    data = {
        "id": item_id,
        "title": f"Meme {item_id}",
        "url": f"https://i.redd.it/{item_id}.jpg",
        "subreddit": "r/memes",
        "permalink": f"https://reddit.com/r/memes/comments/{item_id}",
        "upvotes": 10,
        "author": "someone",
        "created": 1_700_000_000_000,
    }
    data.update(overrides)
    return MediaItem(**data)


def make_lesson(lesson_id: str = "lesson_m1_beginner_1", **overrides) -> Lesson:
    data = {
        "id": lesson_id,
        "media_id": "m1",
        "level": "beginner",
        "explanation": "",
        "vocabulary": [
            VocabularyItem(word="sit", definition="to rest on a seat", example="The cat sits."),
        ],
        "questions": [
            QuizQuestion(
                id="q1",
                type="fill_in_the_gap",
                question="The cat _____ on the computer",
                correct_answer="sits",
                explanation="Present simple, third person.",
            ),
            QuizQuestion(
                id="q2",
                type="true_false",
                question="True or False: 'sit' is a verb.",
                options=["True", "False"],
                correct_answer="True",
                explanation="'Sit' describes an action.",
            ),
        ],
        "created_at": 1_700_000_000_000,
    }
    data.update(overrides)
    return Lesson(**data)


@pytest.fixture
def memory_store():
    store = MemoryStore()
    asyncio.run(store.initialize())
    return store


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLiteStore(str(tmp_path / "airmems-test.db"))
    asyncio.run(store.initialize())
    yield store
    asyncio.run(store.close())


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Run a test against both store implementations."""
    if request.param == "memory":
        instance = MemoryStore()
    else:
        instance = SQLiteStore(str(tmp_path / "airmems-param.db"))
    asyncio.run(instance.initialize())
    yield instance
    asyncio.run(instance.close())

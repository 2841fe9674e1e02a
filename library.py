"""Read models over the store: lesson lists and learning statistics."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from schemas import Lesson
from store import BaseStore


@dataclass(frozen=True)
class LearningStats:
    total_lessons: int = 0
    beginner_lessons: int = 0
    intermediate_lessons: int = 0
    advanced_lessons: int = 0
    total_vocabulary: int = 0
    total_questions: int = 0
    completed_lessons: int = 0
    average_score: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def recent_lessons(store: BaseStore) -> List[Lesson]:
    """All generated lessons, newest first."""
    lessons = await store.get_all_lessons()
    return sorted(lessons, key=lambda lesson: lesson.created_at, reverse=True)


async def saved_lessons(store: BaseStore) -> List[Lesson]:
    """Bookmarked lessons, most recently saved first.

    Markers whose lesson was deleted are skipped.
    """
    markers = sorted(
        await store.get_saved_lesson_markers(), key=lambda m: m.saved_at, reverse=True
    )
    lessons = []
    for marker in markers:
        lesson = await store.get_lesson(marker.lesson_id)
        if lesson is not None:
            lessons.append(lesson)
    return lessons


async def learning_stats(store: BaseStore) -> LearningStats:
    lessons = await store.get_all_lessons()
    by_level = {"beginner": 0, "intermediate": 0, "advanced": 0}
    for lesson in lessons:
        by_level[lesson.level] += 1

    lesson_ids = {lesson.id for lesson in lessons}
    scores = [p.score for p in await store.get_all_progress() if p.lesson_id in lesson_ids]

    return LearningStats(
        total_lessons=len(lessons),
        beginner_lessons=by_level["beginner"],
        intermediate_lessons=by_level["intermediate"],
        advanced_lessons=by_level["advanced"],
        total_vocabulary=sum(len(lesson.vocabulary) for lesson in lessons),
        total_questions=sum(len(lesson.questions) for lesson in lessons),
        completed_lessons=len(scores),
        average_score=round(sum(scores) / len(scores), 1) if scores else None,
    )

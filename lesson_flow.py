"""Lesson workflow for one feed item.

A :class:`LessonSession` walks a meme through

    IDLE -> EXPLANATION_PENDING -> LEVEL_SELECTION -> LESSON_PENDING -> LESSON_READY

The current step is the single ``state`` value; the explanation, lesson and
answers are data attached to the session and never decide the step.
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, Optional

from errors import AirMemsError, InvalidTransition
from generation_client import GenerationClient
from quiz import QuizResult, grade
from schemas import (
    PROFICIENCY_LEVELS,
    Explanation,
    Lesson,
    MediaItem,
    ProgressRecord,
    SavedLessonMarker,
    now_ms,
)
from store import BaseStore

logger = logging.getLogger(__name__)


class WorkflowState(str, enum.Enum):
    IDLE = "idle"
    EXPLANATION_PENDING = "explanation_pending"
    LEVEL_SELECTION = "level_selection"
    LESSON_PENDING = "lesson_pending"
    LESSON_READY = "lesson_ready"


class LessonSession:
    def __init__(self, media_item: MediaItem, store: BaseStore, client: GenerationClient):
        self.media_item = media_item
        self.store = store
        self.client = client
        self.state = WorkflowState.IDLE
        self.selected_level: Optional[str] = None
        self.explanation: Optional[Explanation] = None
        self.lesson: Optional[Lesson] = None
        self.answers: Dict[str, str] = {}
        self.last_result: Optional[QuizResult] = None
        # Bumped by reset(); a generation started under an older value is stale.
        self._generation = 0

    def _require(self, action: str, *allowed: WorkflowState) -> None:
        if self.state not in allowed:
            raise InvalidTransition(action, self.state)

    def begin(self) -> None:
        self._require("begin", WorkflowState.IDLE)
        self.state = WorkflowState.EXPLANATION_PENDING

    async def request_explanation(self, language: str) -> Explanation:
        """Ask the proxy to explain the meme; the step does not change.

        Generation errors propagate unchanged. Caching the explanation is
        best effort.
        """
        self._require("request an explanation", WorkflowState.EXPLANATION_PENDING)
        explanation = await self.client.explain(self.media_item, language)
        try:
            await self.store.put_explanation(explanation)
        except AirMemsError as exc:
            logger.warning("Failed to cache explanation %s: %s", explanation.id, exc)
        self.explanation = explanation
        return explanation

    def proceed_to_levels(self) -> None:
        """Skip the explanation step, or continue after reading one."""
        self._require("choose a level", WorkflowState.EXPLANATION_PENDING)
        self.state = WorkflowState.LEVEL_SELECTION

    async def select_level(self, level: str) -> Lesson:
        self._require("generate a lesson", WorkflowState.LEVEL_SELECTION)
        if level not in PROFICIENCY_LEVELS:
            raise ValueError(f"Unknown proficiency level '{level}'")

        self.selected_level = level
        self.state = WorkflowState.LESSON_PENDING
        generation = self._generation
        try:
            lesson = await self.client.generate_lesson(self.media_item, level)
            await self.store.put_lesson(lesson)
        except BaseException:
            if not self._is_stale(generation):
                self.state = WorkflowState.LEVEL_SELECTION
            raise

        if self._is_stale(generation):
            logger.info("Discarding lesson %s: session was reset while generating", lesson.id)
            return lesson

        self.lesson = lesson
        self.answers = {}
        self.last_result = None
        self.state = WorkflowState.LESSON_READY
        logger.info(
            "Lesson %s ready (%d words, %d questions)",
            lesson.id,
            len(lesson.vocabulary),
            len(lesson.questions),
        )
        return lesson

    def update_answer(self, question_id: str, answer: str) -> None:
        self._require("answer a question", WorkflowState.LESSON_READY)
        self.answers[question_id] = answer

    def score_preview(self) -> QuizResult:
        """Grade the current answers without recording anything."""
        self._require("preview the score", WorkflowState.LESSON_READY)
        assert self.lesson is not None
        return grade(self.lesson, self.answers)

    async def submit_answers(self) -> QuizResult:
        self._require("submit answers", WorkflowState.LESSON_READY)
        assert self.lesson is not None
        result = grade(self.lesson, self.answers)
        await self.store.put_progress(
            ProgressRecord(
                lesson_id=self.lesson.id,
                answers=dict(self.answers),
                score=result.score,
                completed_at=now_ms(),
            )
        )
        self.last_result = result
        return result

    async def save_lesson(self) -> SavedLessonMarker:
        self._require("save the lesson", WorkflowState.LESSON_READY)
        assert self.lesson is not None
        return await self.store.mark_lesson_saved(self.lesson.id)

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation or self.state is not WorkflowState.LESSON_PENDING

    def reset(self) -> None:
        self._generation += 1
        self.state = WorkflowState.IDLE
        self.selected_level = None
        self.explanation = None
        self.lesson = None
        self.answers = {}
        self.last_result = None


__all__ = ["WorkflowState", "LessonSession"]

"""Quiz grading for generated lessons."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Mapping, Optional

from schemas import Lesson, QuizQuestion


@dataclass(frozen=True)
class QuestionResult:
    question_id: str
    user_answer: Optional[str]
    correct_answer: str
    is_correct: bool
    explanation: str


@dataclass(frozen=True)
class QuizResult:
    score: int
    correct_count: int
    total: int
    results: List[QuestionResult] = field(default_factory=list)


def _normalize(answer: str) -> str:
    return answer.strip().casefold()


def answers_match(question: QuizQuestion, answer: Optional[str]) -> bool:
    """Compare a submitted answer with the question's key.

    One policy for every question type: surrounding whitespace and letter
    case are ignored. An unanswered question is never correct.
    """
    if answer is None:
        return False
    return _normalize(answer) == _normalize(question.correct_answer)


def score_for(correct: int, total: int) -> int:
    """Percentage of correct answers rounded half up; 0 for an empty quiz."""
    if total <= 0:
        return 0
    ratio = Decimal(100 * correct) / Decimal(total)
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def score_band(score: int) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    return "keep_practicing"


def grade(lesson: Lesson, answers: Mapping[str, str]) -> QuizResult:
    results = []
    for question in lesson.questions:
        user_answer = answers.get(question.id)
        results.append(
            QuestionResult(
                question_id=question.id,
                user_answer=user_answer,
                correct_answer=question.correct_answer,
                is_correct=answers_match(question, user_answer),
                explanation=question.explanation,
            )
        )
    correct = sum(1 for result in results if result.is_correct)
    total = len(results)
    return QuizResult(
        score=score_for(correct, total),
        correct_count=correct,
        total=total,
        results=results,
    )

"""Pydantic records for memes, lessons, explanations and learner progress.

Python attributes are snake_case; the JSON exchanged with the proxy and kept
in the store uses the camelCase aliases. Timestamps are epoch milliseconds.
"""

from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar, get_args

from pydantic import BaseModel, Field, ValidationError, field_validator

__all__ = [
    "ProficiencyLevel",
    "QuestionType",
    "SupportedLanguage",
    "PROFICIENCY_LEVELS",
    "LANGUAGE_OPTIONS",
    "MediaItem",
    "VocabularyItem",
    "QuizQuestion",
    "Lesson",
    "Explanation",
    "ProgressRecord",
    "SavedLessonMarker",
    "ExplainMemeRequest",
    "GenerateLessonRequest",
    "now_ms",
    "parse_json_safe",
]

ProficiencyLevel = Literal["beginner", "intermediate", "advanced"]
QuestionType = Literal["multiple_choice", "fill_in_the_gap", "true_false"]
SupportedLanguage = Literal[
    "english", "russian", "spanish", "french", "german", "italian",
    "portuguese", "chinese", "japanese", "korean", "arabic", "hindi",
    "turkish", "polish", "dutch", "swedish", "norwegian", "danish",
    "finnish", "czech",
]

PROFICIENCY_LEVELS: tuple[str, ...] = get_args(ProficiencyLevel)

# code -> (name, native name)
LANGUAGE_OPTIONS: Dict[str, tuple[str, str]] = {
    "english": ("English", "English"),
    "russian": ("Russian", "Русский"),
    "spanish": ("Spanish", "Español"),
    "french": ("French", "Français"),
    "german": ("German", "Deutsch"),
    "italian": ("Italian", "Italiano"),
    "portuguese": ("Portuguese", "Português"),
    "chinese": ("Chinese", "中文"),
    "japanese": ("Japanese", "日本語"),
    "korean": ("Korean", "한국어"),
    "arabic": ("Arabic", "العربية"),
    "hindi": ("Hindi", "हिन्दी"),
    "turkish": ("Turkish", "Türkçe"),
    "polish": ("Polish", "Polski"),
    "dutch": ("Dutch", "Nederlands"),
    "swedish": ("Swedish", "Svenska"),
    "norwegian": ("Norwegian", "Norsk"),
    "danish": ("Danish", "Dansk"),
    "finnish": ("Finnish", "Suomi"),
    "czech": ("Czech", "Čeština"),
}


def now_ms() -> int:
    return int(time.time() * 1000)


class _Record(BaseModel):
    model_config = {"populate_by_name": True}

    def to_wire(self) -> Dict[str, Any]:
        """Return the camelCase JSON form used on the wire and in storage."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MediaItem(_Record):
    """A single image post shown in the feed."""

    model_config = {"populate_by_name": True, "frozen": True}

    id: str
    title: str
    url: str = Field(description="Direct link to the static image.")
    subreddit: str = Field(description="Origin category, e.g. 'r/memes'.")
    permalink: str
    upvotes: int = 0
    author: str = "unknown"
    created: int = Field(default_factory=now_ms)


class VocabularyItem(_Record):
    word: str
    definition: str
    example: str


class QuizQuestion(_Record):
    id: str
    type: QuestionType
    question: str
    options: List[str] = Field(default_factory=list)
    correct_answer: str = Field(alias="correctAnswer")
    explanation: str = ""

    @field_validator("options", mode="before")
    @classmethod
    def _none_means_no_options(cls, value: Any) -> Any:
        return [] if value is None else value


class Lesson(_Record):
    id: str
    media_id: str = Field(alias="memeId")
    level: ProficiencyLevel
    explanation: str = ""
    vocabulary: List[VocabularyItem] = Field(default_factory=list)
    questions: List[QuizQuestion] = Field(default_factory=list)
    created_at: int = Field(alias="createdAt", default_factory=now_ms)


class Explanation(_Record):
    id: str
    media_id: str = Field(alias="memeId")
    language: SupportedLanguage
    explanation: str
    cultural_context: Optional[str] = Field(default=None, alias="culturalContext")
    created_at: int = Field(alias="createdAt", default_factory=now_ms)


class ProgressRecord(_Record):
    lesson_id: str = Field(alias="lessonId")
    answers: Dict[str, str] = Field(default_factory=dict)
    score: int = Field(ge=0, le=100)
    completed_at: int = Field(alias="completedAt", default_factory=now_ms)


class SavedLessonMarker(_Record):
    lesson_id: str = Field(alias="lessonId")
    saved_at: int = Field(alias="savedAt", default_factory=now_ms)


class ExplainMemeRequest(_Record):
    meme_id: str = Field(alias="memeId", min_length=1)
    meme_title: str = Field(alias="memeTitle")
    meme_url: str = Field(alias="memeUrl", min_length=1)
    language: SupportedLanguage


class GenerateLessonRequest(_Record):
    meme_id: str = Field(alias="memeId", min_length=1)
    meme_title: str = Field(alias="memeTitle")
    meme_url: str = Field(alias="memeUrl", min_length=1)
    level: ProficiencyLevel


_T = TypeVar("_T", bound=BaseModel)


def _find_first_json_object(text: str) -> tuple[str, int, int]:
    start = text.find("{")
    while start != -1:
        depth = 0
        for idx in range(start, len(text)):
            char = text[idx]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except ValueError:
                        break
                    return candidate, start, idx + 1
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def parse_json_safe(text: str, model: Type[_T]) -> _T:
    """Parse ``text`` into ``model`` with a fallback JSON extraction pass.

    Model replies sometimes carry a short preamble before the JSON object;
    anything after the object is rejected.
    """

    first_error: Exception | None = None
    try:
        return model.model_validate_json(text)
    except (ValidationError, ValueError, TypeError) as exc:
        first_error = exc

    try:
        snippet, _, end = _find_first_json_object(text)
    except ValueError:
        raise first_error

    if text[end:].strip():
        if isinstance(first_error, ValidationError):
            raise first_error
        raise ValueError("Trailing content detected after JSON object")

    return model.model_validate_json(snippet)

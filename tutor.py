"""Prompt assembly and reply reshaping for the explanation and lesson endpoints."""

import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from errors import MalformedUpstreamResponse
from prompts import get_prompt
from schemas import (
    LANGUAGE_OPTIONS,
    Explanation,
    Lesson,
    QuizQuestion,
    VocabularyItem,
    now_ms,
    parse_json_safe,
)

logger = logging.getLogger(__name__)

# --------- Model/endpoint from environment ---------
MODEL_ID = os.getenv("MODEL_ID", "gpt-4o")
LLM_URL = os.getenv("LLM_URL", "https://api.openai.com/v1/chat/completions")

EXPLAIN_PROMPT_ID = "explain_meme"
LESSON_PROMPT_ID = "generate_lesson"


def target_language_name(language: str) -> str:
    """Name used in prompts, e.g. ``"German (Deutsch)"``; unknown codes fall back to English."""
    entry = LANGUAGE_OPTIONS.get(language)
    if not entry:
        return "English"
    name, native = entry
    return name if name == native else f"{name} ({native})"


def _multimodal_messages(system: str, text: str, image_url: str) -> List[Dict[str, Any]]:
    return [
        {"role": "system", "content": system},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {"url": image_url, "detail": "high"}},
            ],
        },
    ]


def build_explanation_messages(meme_title: str, meme_url: str, language: str) -> Tuple[List[Dict[str, Any]], str]:
    prompt = get_prompt(EXPLAIN_PROMPT_ID)
    system, user = prompt.render(
        meme_title=meme_title, target_language=target_language_name(language)
    )
    return _multimodal_messages(system, user, meme_url), prompt.prompt_version


def build_lesson_messages(meme_title: str, meme_url: str, level: str) -> Tuple[List[Dict[str, Any]], str]:
    prompt = get_prompt(LESSON_PROMPT_ID)
    system, user = prompt.render(meme_title=meme_title, level=level, level_upper=level.upper())
    return _multimodal_messages(system, user, meme_url), prompt.prompt_version


class _ExplanationReply(BaseModel):
    explanation: str = Field(min_length=1)
    culturalContext: Optional[str] = None


class _LessonReply(BaseModel):
    vocabulary: List[VocabularyItem]
    questions: List[QuizQuestion]


def reshape_explanation(content: str, *, meme_id: str, language: str, created_at: Optional[int] = None) -> Explanation:
    try:
        reply = parse_json_safe(content, _ExplanationReply)
    except (ValidationError, ValueError) as exc:
        raise MalformedUpstreamResponse(f"Explanation reply is incomplete: {exc}") from exc
    created = created_at if created_at is not None else now_ms()
    return Explanation(
        id=f"explanation_{meme_id}_{language}_{created}",
        media_id=meme_id,
        language=language,
        explanation=reply.explanation,
        cultural_context=reply.culturalContext or None,
        created_at=created,
    )


def reshape_lesson(content: str, *, meme_id: str, level: str, created_at: Optional[int] = None) -> Lesson:
    try:
        reply = parse_json_safe(content, _LessonReply)
    except (ValidationError, ValueError) as exc:
        raise MalformedUpstreamResponse(f"Lesson reply is incomplete: {exc}") from exc
    created = created_at if created_at is not None else now_ms()
    return Lesson(
        id=f"lesson_{meme_id}_{level}_{created}",
        media_id=meme_id,
        level=level,
        explanation="",
        vocabulary=reply.vocabulary,
        questions=reply.questions,
        created_at=created,
    )

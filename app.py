# app.py: AirMems API v1.0.0
# - Thin proxy in front of an OpenAI-compatible vision model
# - Fixed prompt templates (prompts/*.json), JSON replies reshaped into records
# - Error bodies are {error, details?} so the client can show them verbatim

import asyncio
import json
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from uuid import uuid4

import requests
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import tutor
from env_validation import get_env_float, get_env_int
from errors import MalformedUpstreamResponse
from prompts import load_prompts
from schemas import ExplainMemeRequest, GenerateLessonRequest

logger = logging.getLogger(__name__)

SERVICE_NAME = "AirMems API"


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        from env_validation import validate_environment
        validate_environment()

        load_prompts()
        logger.info("Proxying to %s with model %s", tutor.LLM_URL, tutor.MODEL_ID)
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title=SERVICE_NAME, version="1.0.0", lifespan=_lifespan)

_LLM_LOGGER = logging.getLogger("airmems.llm")
if not _LLM_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _LLM_LOGGER.addHandler(_handler)
_LLM_LOGGER.setLevel(logging.INFO)
_LLM_LOGGER.propagate = False


class LLMCallError(RuntimeError):
    """The upstream model could not produce a usable reply."""


def _error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    content: Dict[str, Any] = {"error": error}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
async def _invalid_request(_: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()) if part != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    )
    return _error_response(400, "Invalid request", problems)


def _llm_call(
    messages: List[Dict[str, Any]],
    max_tokens: int,
    *,
    api_key: str,
    prompt_version: str,
    endpoint: str,
) -> str:
    """Send one chat completion request and return the message content."""
    payload = {
        "model": tutor.MODEL_ID,
        "messages": messages,
        "response_format": {"type": "json_object"},
        "temperature": get_env_float("LLM_TEMPERATURE", 0.7),
        "max_tokens": int(max_tokens),
    }
    headers = {"Authorization": f"Bearer {api_key}"}
    request_id = str(uuid4())
    start = time.perf_counter()
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    status = "error"
    try:
        try:
            r = requests.post(
                tutor.LLM_URL,
                json=payload,
                headers=headers,
                timeout=get_env_int("LLM_TIMEOUT", 120),
            )
            r.raise_for_status()
            data = r.json()
        except requests.HTTPError as e:
            raise LLMCallError(f"LLM-HTTP {e.response.status_code}: {e.response.text[:300]}") from e
        except (requests.RequestException, ValueError) as e:
            raise LLMCallError(f"LLM error: {e}") from e

        usage = data.get("usage") if isinstance(data, dict) else None
        if isinstance(usage, dict):
            tokens_in = usage.get("prompt_tokens")
            tokens_out = usage.get("completion_tokens")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMCallError(f"Unexpected LLM response: {str(data)[:300]}") from e
        if not content:
            raise LLMCallError("No content received from the model")
        status = "ok"
        return content
    finally:
        log_record = {
            "event": "llm_call",
            "request_id": request_id,
            "endpoint": endpoint,
            "prompt_version": prompt_version,
            "model": tutor.MODEL_ID,
            "status": status,
            "latency_ms": int((time.perf_counter() - start) * 1000),
            "tokens_in": tokens_in,
            "tokens_out": tokens_out,
        }
        _LLM_LOGGER.info(json.dumps(log_record, ensure_ascii=False))


def _missing_key_response() -> JSONResponse:
    return _error_response(500, "OpenAI API key not configured")


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": SERVICE_NAME}


@app.post("/api/explain-meme")
async def explain_meme(body: ExplainMemeRequest):
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return _missing_key_response()

    try:
        messages, prompt_version = tutor.build_explanation_messages(
            body.meme_title, body.meme_url, body.language
        )
        content = await asyncio.to_thread(
            _llm_call,
            messages,
            get_env_int("EXPLAIN_MAX_TOKENS", 1500),
            api_key=api_key,
            prompt_version=prompt_version,
            endpoint="explain-meme",
        )
        explanation = tutor.reshape_explanation(
            content, meme_id=body.meme_id, language=body.language
        )
    except (LLMCallError, MalformedUpstreamResponse) as exc:
        logger.warning("Failed to generate meme explanation for %s: %s", body.meme_id, exc)
        return _error_response(500, "Failed to generate explanation. Please try again.", str(exc))
    except Exception as exc:
        logger.error("Failed to generate meme explanation for %s", body.meme_id, exc_info=True)
        return _error_response(500, "Failed to generate explanation. Please try again.", str(exc) or "Unknown error")

    return explanation.to_wire()


@app.post("/api/generate-lesson")
async def generate_lesson(body: GenerateLessonRequest):
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return _missing_key_response()

    try:
        messages, prompt_version = tutor.build_lesson_messages(
            body.meme_title, body.meme_url, body.level
        )
        content = await asyncio.to_thread(
            _llm_call,
            messages,
            get_env_int("LESSON_MAX_TOKENS", 2000),
            api_key=api_key,
            prompt_version=prompt_version,
            endpoint="generate-lesson",
        )
        lesson = tutor.reshape_lesson(content, meme_id=body.meme_id, level=body.level)
    except (LLMCallError, MalformedUpstreamResponse) as exc:
        logger.warning("Failed to generate lesson for %s: %s", body.meme_id, exc)
        return _error_response(500, "Failed to generate lesson. Please try again.", str(exc))
    except Exception as exc:
        logger.error("Failed to generate lesson for %s", body.meme_id, exc_info=True)
        return _error_response(500, "Failed to generate lesson. Please try again.", str(exc) or "Unknown error")

    return lesson.to_wire()

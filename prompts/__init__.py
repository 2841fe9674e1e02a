"""Utilities for loading the prompt templates sent to the vision model."""
from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, Mapping

_PROMPT_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class PromptTemplate:
    """A system/user prompt pair filled with ``str.format`` fields."""

    id: str
    prompt_version: str
    description: str
    system_template: str
    user_template: str

    def render(self, **fields: str) -> tuple[str, str]:
        return self.system_template.format(**fields), self.user_template.format(**fields)


def _load_prompt(path: Path) -> PromptTemplate:
    payload = json.loads(path.read_text(encoding="utf-8"))
    required = {"id", "prompt_version", "description", "system_template", "user_template"}
    missing = sorted(required - payload.keys())
    if missing:
        raise ValueError(f"Prompt file {path.name} missing keys: {', '.join(missing)}")
    return PromptTemplate(
        id=str(payload["id"]),
        prompt_version=str(payload["prompt_version"]),
        description=str(payload["description"]),
        system_template=str(payload["system_template"]),
        user_template=str(payload["user_template"]),
    )


def _iter_prompt_files(directory: Path) -> Iterable[Path]:
    for path in sorted(directory.glob("*.json")):
        if path.is_file():
            yield path


@lru_cache(maxsize=1)
def load_prompts(directory: Path | None = None) -> Mapping[str, PromptTemplate]:
    base_dir = Path(directory) if directory else _PROMPT_DIR
    prompts: Dict[str, PromptTemplate] = {}
    for file_path in _iter_prompt_files(base_dir):
        prompt = _load_prompt(file_path)
        if prompt.id in prompts:
            raise ValueError(f"Duplicate prompt id detected: {prompt.id}")
        prompts[prompt.id] = prompt
    if not prompts:
        raise RuntimeError(f"No prompt definitions found in {base_dir}")
    return prompts


def get_prompt(prompt_id: str) -> PromptTemplate:
    prompts = load_prompts()
    if prompt_id not in prompts:
        raise KeyError(f"Unknown prompt '{prompt_id}'. Available: {', '.join(sorted(prompts))}")
    return prompts[prompt_id]


__all__ = ["PromptTemplate", "load_prompts", "get_prompt"]

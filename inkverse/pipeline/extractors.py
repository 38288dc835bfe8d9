"""Structured helper-stage calls: settings derivation, entity drafts, references.

Every stage asks the model for one JSON object. Output that cannot be parsed
is treated as "nothing extracted", never as an error.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from inkverse import storage
from inkverse.llm import CompletionClient, LLMError
from inkverse.memory import MemoryStore
from inkverse.models import EngineConfig, EntityDraft
from inkverse.prompts import (
    CHARACTER_EXTRACTOR_PROMPT,
    REFERENCE_EXTRACTOR_PROMPT,
    SETTINGS_EXTRACTOR_PROMPT,
    SETTINGS_EXTRACTOR_STRICT_SUFFIX,
    WORLD_EXTRACTOR_PROMPT,
)

logger = logging.getLogger(__name__)

ENTITY_PROMPTS = {
    "character": CHARACTER_EXTRACTOR_PROMPT,
    "world": WORLD_EXTRACTOR_PROMPT,
}

SETTINGS_KEYWORDS = "genre conflict setting tone theme stakes premise"

_SETTINGS_ALIASES = {
    "genre": "genre",
    "coreConflict": "coreConflict",
    "core_conflict": "coreConflict",
    "conflict": "coreConflict",
}

_GENRE_LINE_RE = re.compile(r"^\W*genre\W*[:\-]\s*(.+)$", re.I | re.M)
_CONFLICT_LINE_RE = re.compile(r"^\W*core\s*conflict\W*[:\-]\s*(.+)$", re.I | re.M)
_VERSUS_RE = re.compile(r"([^\n.]{3,80}?)\s+(?:vs\.?|versus)\s+([^\n.]{3,80})", re.I)
_SET_GENRE_RE = re.compile(r"\bgenre\s+(?:to|as|=|:)\s*['\"]?([^'\"\n.]{2,60})", re.I)


# ── JSON recovery ────────────────────────────────────────


def _first_balanced_object(text: str) -> str | None:
    """The first top-level {...} block, respecting strings and escapes."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_str = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_str:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_str = False
            elif ch == '"':
                in_str = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def parse_json_object(text: str) -> dict | None:
    """Parse one JSON object from LLM output.

    Strips markdown fences, accepts a single-object array, and falls back to
    the first balanced {...} block embedded in prose.
    """
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    if isinstance(data, dict):
        return data
    block = _first_balanced_object(cleaned)
    if block is not None:
        try:
            data = json.loads(block)
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            pass
    logger.warning("Extractor output is not valid JSON: %.120s", cleaned)
    return None


def _transcript(chat_id: str, limit: int, max_chars: int = 8000) -> str:
    turns = storage.get_recent_turns(chat_id, limit)
    text = "\n".join(f"{t['role']}: {t['content'][:400]}" for t in turns)
    return text[:max_chars]


# ── Plot settings ────────────────────────────────────────


def normalize_settings(proposed: dict | None) -> dict[str, str] | None:
    """Keep only the plot-scoped fields (genre, coreConflict) with non-empty text."""
    if not proposed:
        return None
    out: dict[str, str] = {}
    for key, value in proposed.items():
        field = _SETTINGS_ALIASES.get(key)
        if field and isinstance(value, str) and value.strip():
            out[field] = value.strip()
    return out or None


def heuristic_settings(text: str) -> dict[str, str] | None:
    """Last-resort settings from labelled lines ("Genre: ...") or an "A vs. B" phrase."""
    out: dict[str, str] = {}
    if m := _GENRE_LINE_RE.search(text) or _SET_GENRE_RE.search(text):
        out["genre"] = m.group(1).strip().strip("*").strip()
    if m := _CONFLICT_LINE_RE.search(text):
        out["coreConflict"] = m.group(1).strip().strip("*").strip()
    elif m := _VERSUS_RE.search(text):
        out["coreConflict"] = f"{m.group(1).strip()} vs. {m.group(2).strip()}"
    return {k: v for k, v in out.items() if v} or None


def _last_assistant_text(chat_id: str) -> str:
    """The newest substantial assistant turn, skipping bracketed placeholders."""
    recent = list(reversed(storage.get_recent_turns(chat_id, 5, role="assistant")))
    for turn in recent:
        content = turn["content"]
        if not content.lstrip().startswith("[") and len(content) >= 120:
            return content[:4000]
    return recent[0]["content"][:4000] if recent else ""


async def derive_settings(
    llm: CompletionClient,
    memory: MemoryStore,
    chat_id: str,
    message: str,
    config: EngineConfig,
) -> dict[str, str] | None:
    """Derive a {genre?, coreConflict?} proposal from the recent conversation.

    Tries the extractor stage, retries once with a stricter instruction,
    then falls back to pattern heuristics over the same material.
    """
    last_assistant = _last_assistant_text(chat_id)
    recent_chat = _transcript(chat_id, 100)
    summary = memory.get_summary(chat_id) or ""
    relevant = memory.retrieve_relevant(chat_id, SETTINGS_KEYWORDS, config.reference_limit)
    relevant_text = "\n".join(f"{r['role']}: {r['content'][:400]}" for r in relevant)

    user_prompt = "\n\n".join([
        f"Latest assistant response:\n{last_assistant}",
        f"User message:\n{message}",
        f"Rolling summary:\n{summary}",
        f"Relevant snippets:\n{relevant_text}",
        f"Recent chat transcript:\n{recent_chat}",
    ])

    for system in (SETTINGS_EXTRACTOR_PROMPT, SETTINGS_EXTRACTOR_PROMPT + SETTINGS_EXTRACTOR_STRICT_SUFFIX):
        try:
            raw = await llm.complete("settings_extractor", system, user_prompt, temperature=0)
        except LLMError as e:
            logger.warning("settings extractor failed: %s", e)
            break
        result = normalize_settings(parse_json_object(raw))
        if result:
            return result

    return heuristic_settings("\n".join([message, last_assistant, recent_chat]))


# ── Character / world drafts ─────────────────────────────


async def extract_entity_draft(
    llm: CompletionClient,
    kind: str,
    chat_id: str,
    message: str,
    config: EngineConfig,
) -> EntityDraft | None:
    """Extract a character or world-entry write proposal, or None when there is none."""
    user_prompt = f"Message:\n{message}\n\nRecent chat:\n{_transcript(chat_id, config.extraction_turns)}"
    try:
        raw = await llm.complete(f"{kind}_extractor", ENTITY_PROMPTS[kind], user_prompt, temperature=0)
    except LLMError as e:
        logger.warning("%s extractor failed: %s", kind, e)
        return None
    data = parse_json_object(raw)
    if not data:
        return None
    if kind == "world":
        data.pop("role", None)
    try:
        draft = EntityDraft.model_validate(
            {k: data.get(k) for k in ("name", "role", "summary", "traits") if k in data}
        )
    except ValidationError as e:
        logger.warning("%s extractor returned an unusable draft: %s", kind, e)
        return None
    return None if draft.is_empty() else draft


# ── Referenced entities ──────────────────────────────────


def _names(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


async def extract_references(
    llm: CompletionClient, chat_id: str, message: str, config: EngineConfig
) -> tuple[list[str], list[str]]:
    """Names of characters and world entries the message refers to."""
    user_prompt = f"Prompt:\n{message}\n\nTranscript:\n{_transcript(chat_id, config.history_turns, 4000)}"
    try:
        raw = await llm.complete("reference_extractor", REFERENCE_EXTRACTOR_PROMPT, user_prompt, temperature=0)
    except LLMError as e:
        logger.warning("reference extractor failed: %s", e)
        return [], []
    data = parse_json_object(raw) or {}
    return _names(data.get("characters")), _names(data.get("world"))

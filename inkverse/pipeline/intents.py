"""Intent classification and the cheap pattern detectors around it.

classify_intent runs a chain of resolvers and returns the first result:
  1. the intent_classifier model stage, accepted at or above the threshold
  2. settings phrases ("save settings", "set genre to ...")
  3. chapter verbs: convert > write > rewrite
"""

from __future__ import annotations

import logging
import re

from pydantic import ValidationError

from inkverse.llm import CompletionClient, LLMError
from inkverse.models import IntentResult
from inkverse.prompts import INTENT_CLASSIFIER_PROMPT

from .extractors import parse_json_object
from .resolver import mine_chapter_request

logger = logging.getLogger(__name__)

CHAPTER_ACTIONS = ("create_chapter", "update_chapter", "convert_to_manhwa")

CONVERT_RE = re.compile(r"\b(?:convert\s+(?:the\s+|this\s+)?chapter|generate\s+panels|panel\s+script)\b", re.I)
CHAPTER_WRITE_RE = re.compile(r"\b(?:write|draft|create)\s+(?:(?:a|the|new|next)\s+)*chapter\b", re.I)
CHAPTER_REWRITE_RE = re.compile(r"\b(?:rewrite|revise|edit)\s+(?:the\s+)?chapter\b", re.I)

# Project settings only; "character settings" and "world settings" belong to their own chats
_PROJECT_SETTINGS = r"(?<!character\s)(?<!characters\s)(?<!world\s)settings\b"

SETTINGS_PHRASES = [
    re.compile(r"\b(?:save|set|apply|update)\s+(?:\w+\s+){0,3}" + _PROJECT_SETTINGS, re.I),
    re.compile(r"\bgenerate\s+(?:\w+\s+){0,3}" + _PROJECT_SETTINGS, re.I),
    re.compile(r"\b(?:set|change|update)\s+(?:the\s+)?(?:genre|core\s*conflict)\b", re.I),
]

SAVE_VERB_RE = re.compile(r"\b(?:save|persist|apply|commit)\b", re.I)
SAVE_OBJECT_RE = re.compile(r"\b(?:chapter|draft|scene|it|this)\b", re.I)

# Write requests owned by each chat type, used to refuse cross-domain writes
DOMAIN_WRITE_PATTERNS: dict[str, list[re.Pattern]] = {
    "plot": [
        re.compile(r"\b(?:write|draft|create|rewrite|revise|edit|save|add)\s+(?:\w+\s+){0,2}chapters?\b", re.I),
        CONVERT_RE,
        *SETTINGS_PHRASES,
    ],
    "character": [
        re.compile(
            r"\b(?:create|add|make|update|edit|save|rename|change|modify)\s+(?:\w+\s+){0,2}"
            r"(?:character|characters|character\s+sheet)\b",
            re.I,
        ),
    ],
    "world": [
        re.compile(
            r"\b(?:create|add|make|update|edit|save|change|modify)\s+(?:\w+\s+){0,2}"
            r"(?:world\s+(?:entry|entries|note|notes|setting|settings)|locations?|factions?|regions?)\b",
            re.I,
        ),
    ],
}


def detect_settings_request(message: str) -> bool:
    return any(p.search(message) for p in SETTINGS_PHRASES)


def detect_save_draft(message: str) -> bool:
    """Requests to persist the previous draft, e.g. "save it" or "commit this chapter"."""
    if CHAPTER_WRITE_RE.search(message) or CONVERT_RE.search(message):
        return False
    return bool(SAVE_VERB_RE.search(message) and SAVE_OBJECT_RE.search(message))


def detect_cross_domain(message: str, chat_type: str) -> str | None:
    """The chat type that owns a write requested in the wrong chat, or None.

    Character and world chats never accept chapter or settings requests.
    Elsewhere a foreign-domain match only counts when the message does not
    also read as a request for the chat's own domain.
    """
    owners = [
        kind for kind, patterns in DOMAIN_WRITE_PATTERNS.items()
        if kind != chat_type and any(p.search(message) for p in patterns)
    ]
    if not owners:
        return None
    if chat_type != "plot" and "plot" in owners:
        return "plot"
    own = DOMAIN_WRITE_PATTERNS.get(chat_type, [])
    if any(p.search(message) for p in own):
        return None
    return owners[0]


async def classify_with_model(
    llm: CompletionClient, message: str, summary: str | None, threshold: float
) -> IntentResult | None:
    user_prompt = f"Message: {message}"
    if summary:
        user_prompt = f"Context summary:\n{summary}\n\n{user_prompt}"
    try:
        raw = await llm.complete("intent_classifier", INTENT_CLASSIFIER_PROMPT, user_prompt, temperature=0)
    except LLMError as e:
        logger.warning("intent classifier failed: %s", e)
        return None
    data = parse_json_object(raw)
    if not data:
        return None
    try:
        result = IntentResult(
            action=data.get("action") or "none",
            args=data.get("args") if isinstance(data.get("args"), dict) else {},
            confidence=float(data.get("confidence") or 0),
            source="model",
        )
    except (ValidationError, TypeError, ValueError):
        logger.warning("intent classifier returned an unknown shape: %.120s", raw)
        return None
    if result.action == "none" or result.confidence < threshold:
        return None
    return result


def classify_with_patterns(message: str) -> IntentResult | None:
    if detect_settings_request(message):
        return IntentResult(action="set_settings", confidence=1.0, source="regex")
    number, title = mine_chapter_request(message)
    args = {k: v for k, v in (("chapter_number", number), ("title", title)) if v}
    if CONVERT_RE.search(message):
        return IntentResult(action="convert_to_manhwa", args=args, confidence=1.0, source="regex")
    if CHAPTER_WRITE_RE.search(message):
        return IntentResult(action="create_chapter", args=args, confidence=1.0, source="regex")
    if CHAPTER_REWRITE_RE.search(message):
        return IntentResult(action="update_chapter", args=args, confidence=1.0, source="regex")
    return None


async def classify_intent(
    llm: CompletionClient, message: str, summary: str | None, threshold: float = 0.6
) -> IntentResult | None:
    """First confident intent for a plot-chat message, or None for conversation."""
    result = await classify_with_model(llm, message, summary, threshold)
    if result is not None:
        return result
    return classify_with_patterns(message)

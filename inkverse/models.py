"""Core domain models.

Pipeline stages exchange these types; storage keeps plain dicts.
Pydantic is used for validation at every data boundary.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from inkverse.traits import normalize_traits

ChatType = Literal["plot", "character", "world"]

OperatingMode = Literal["preview", "commit"]

IntentAction = Literal[
    "set_settings",
    "create_chapter",
    "convert_to_manhwa",
    "update_chapter",
    "none",
]


class IntentResult(BaseModel):
    """Transient classification of one user message. Never persisted."""

    action: IntentAction = "none"
    args: dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0.0
    source: str = "model"  # "model" | "regex"


class EntityDraft(BaseModel):
    """A proposed character or world-entry write extracted from the conversation."""

    name: str | None = None
    role: str | None = None  # characters only
    summary: str | None = None
    traits: dict[str, Any] | None = None

    @field_validator("name", "role", "summary", mode="before")
    @classmethod
    def _clean_str(cls, v: Any) -> str | None:
        if not isinstance(v, str):
            return None
        v = v.strip()
        return v or None

    @field_validator("traits", mode="before")
    @classmethod
    def _clean_traits(cls, v: Any) -> dict[str, Any] | None:
        return normalize_traits(v) or None

    def is_empty(self) -> bool:
        return not (self.name or self.role or self.summary or self.traits)


class ChapterTarget(BaseModel):
    """Outcome of chapter resolution.

    `chapter` is the matched stored chapter, or None when the reference names
    a chapter that does not exist yet (title/number are then naming hints).
    """

    chapter: dict[str, Any] | None = None
    number: int | None = None
    title: str | None = None
    source: str = ""
    # True when the title came from the user rather than a draft heading or default
    title_is_explicit: bool = False


class EngineConfig(BaseModel):
    """Tunable thresholds of the memory and intent layers."""

    intent_confidence: float = 0.6
    window_size: int = 500
    memory_size: int = 2000
    summary_trigger: int = 120
    summary_slice: int = 200
    summary_words: int = 300
    summary_input_chars: int = 12000
    draft_min_chars: int = 500
    draft_match_min_chars: int = 300
    draft_max_chars: int = 20000
    history_turns: int = 20
    extraction_turns: int = 40
    relevant_limit: int = 5
    chapter_summary_chars: int = 600
    target_chapter_chars: int = 8000
    reference_limit: int = 8

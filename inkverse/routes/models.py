"""Pydantic request models for API endpoints."""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from inkverse.models import ChatType, OperatingMode

# Client-facing aliases for the operating modes
MODE_ALIASES = {"chat": "preview", "action": "commit"}


class CreateProject(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""


class UpdateSettings(BaseModel):
    """A confirmed settings diff. Unset fields are left untouched."""

    title: str | None = None
    description: str | None = None
    genre: str | None = None
    coreConflict: str | None = None
    settingsJson: dict[str, Any] | None = None


class CreateChat(BaseModel):
    chat_type: ChatType
    title: str = ""


class Mentions(BaseModel):
    chapter_number: int | None = Field(default=None, ge=1)
    title: str | None = None


class ChatBody(BaseModel):
    message: str = Field(min_length=1)
    mode: OperatingMode = "preview"
    mentions: Mentions | None = None
    regenerate_panel_id: str | None = None

    @field_validator("mode", mode="before")
    @classmethod
    def _alias_mode(cls, v):
        if v is None:
            return "preview"
        if isinstance(v, str):
            v = v.strip().lower()
            return MODE_ALIASES.get(v, v)
        return v

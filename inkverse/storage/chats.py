"""Chat sessions. A session's chat_type is fixed at creation."""

from pathlib import Path
from typing import Any

from .core import chats_dir, new_id, now_iso, read_json, write_json

CHAT_TYPES = ("plot", "character", "world")


def _chat_path(chat_id: str) -> Path:
    return chats_dir() / f"{chat_id}.json"


def create_chat(project_id: str, chat_type: str, title: str = "") -> dict[str, Any]:
    if chat_type not in CHAT_TYPES:
        raise ValueError(f"Unknown chat type {chat_type!r}")
    chat = {
        "id": new_id(),
        "project_id": project_id,
        "chat_type": chat_type,
        "title": title or f"{chat_type.capitalize()} chat",
        "created_at": now_iso(),
    }
    write_json(_chat_path(chat["id"]), chat)
    (chats_dir() / chat["id"]).mkdir(exist_ok=True)
    return chat


def get_chat(chat_id: str) -> dict[str, Any] | None:
    return read_json(_chat_path(chat_id), None)


def list_chats(project_id: str) -> list[dict[str, Any]]:
    """All chat sessions of a project, oldest first."""
    chats = []
    for path in chats_dir().glob("*.json"):
        chat = read_json(path, None)
        if chat and chat["project_id"] == project_id:
            chats.append(chat)
    return sorted(chats, key=lambda c: c["created_at"])

"""Durable turn log per chat session (append-only, UI transcript)."""

from typing import Any

from .core import chats_dir, new_id, now_iso, read_json, write_json


def _messages_path(chat_id: str):
    return chats_dir() / chat_id / "messages.json"


def get_turns(chat_id: str) -> list[dict[str, Any]]:
    """Load the turn log for a chat, oldest first. Returns [] if none exist."""
    return read_json(_messages_path(chat_id), [])


def append_turn(
    chat_id: str, role: str, content: str, panel_id: str | None = None
) -> dict[str, Any]:
    """Append one immutable turn and return it (with its generated id)."""
    turn = {
        "id": new_id(),
        "role": role,
        "content": content,
        "panel_id": panel_id,
        "created_at": now_iso(),
    }
    turns = get_turns(chat_id)
    turns.append(turn)
    write_json(_messages_path(chat_id), turns)
    return turn


def get_recent_turns(
    chat_id: str, limit: int, role: str | None = None, exclude_id: str | None = None
) -> list[dict[str, Any]]:
    """Return the newest `limit` turns in chronological order."""
    turns = [
        t for t in get_turns(chat_id)
        if (role is None or t["role"] == role) and t["id"] != exclude_id
    ]
    return turns[-limit:] if limit > 0 else []

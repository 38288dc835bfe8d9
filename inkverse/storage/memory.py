"""Conversational memory files: the fast-lookup memory log and the rolling summary.

The memory log keeps the full text of every turn (including structured
chapter drafts whose turn-log entry is only a placeholder), trimmed to the
most recent entries.
"""

from typing import Any

from .core import chats_dir, now_iso, read_json, write_json


def _memory_path(chat_id: str):
    return chats_dir() / chat_id / "memory.json"


def _summary_path(chat_id: str):
    return chats_dir() / chat_id / "summary.txt"


def get_memory(chat_id: str) -> list[dict[str, Any]]:
    """Memory entries for a chat, oldest first."""
    return read_json(_memory_path(chat_id), [])


def append_memory(chat_id: str, role: str, content: str, keep: int) -> int:
    """Append one entry, trim to the newest `keep`. Returns the new length."""
    entries = get_memory(chat_id)
    entries.append({"role": role, "content": content, "ts": now_iso()})
    if len(entries) > keep:
        entries = entries[-keep:]
    write_json(_memory_path(chat_id), entries)
    return len(entries)


def get_summary(chat_id: str) -> str | None:
    path = _summary_path(chat_id)
    if not path.is_file():
        return None
    return path.read_text() or None


def set_summary(chat_id: str, summary: str) -> None:
    """Overwrite the rolling summary."""
    path = _summary_path(chat_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(summary)

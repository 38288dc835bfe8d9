"""Chapter storage. List order is creation order; positions are derived, never stored."""

from pathlib import Path
from typing import Any

from .core import new_id, now_iso, projects_dir, read_json, write_json


def _chapters_path(project_id: str) -> Path:
    return projects_dir() / project_id / "chapters.json"


def list_chapters(project_id: str) -> list[dict[str, Any]]:
    """Chapters ordered by creation time ascending."""
    return read_json(_chapters_path(project_id), [])


def get_chapter(project_id: str, chapter_id: str) -> dict[str, Any] | None:
    for chapter in list_chapters(project_id):
        if chapter["id"] == chapter_id:
            return chapter
    return None


def create_chapter(project_id: str, title: str, content: str) -> dict[str, Any]:
    chapters = list_chapters(project_id)
    chapter = {
        "id": new_id(),
        "project_id": project_id,
        "title": title,
        "content": content,
        "panel_script": None,
        "created_at": now_iso(),
    }
    chapters.append(chapter)
    write_json(_chapters_path(project_id), chapters)
    return chapter


def update_chapter(project_id: str, chapter_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
    """Update title/content/panel_script in place. Returns None if no chapter matched."""
    chapters = list_chapters(project_id)
    for chapter in chapters:
        if chapter["id"] == chapter_id:
            for key in ("title", "content", "panel_script"):
                if key in fields and fields[key] is not None:
                    chapter[key] = fields[key]
            chapter["updated_at"] = now_iso()
            write_json(_chapters_path(project_id), chapters)
            return chapter
    return None

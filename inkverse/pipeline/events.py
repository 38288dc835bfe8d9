"""Stream event constructors.

Plain events carry a "type" (text, error, done, image_job); structured side
effects carry an "action" so the client can react without parsing prose.
"""

from typing import Any


def text(content: str) -> dict[str, Any]:
    return {"type": "text", "content": content}


def error(message: str) -> dict[str, Any]:
    return {"type": "error", "message": message}


def done(message_id: str | None = None) -> dict[str, Any]:
    event: dict[str, Any] = {"type": "done"}
    if message_id:
        event["messageId"] = message_id
    return event


def confirm_settings(changes: dict[str, Any]) -> dict[str, Any]:
    return {"action": "confirm_settings", "changes": changes}


def create_chapter(
    title: str, content: str, chapter_number: int | None = None, chapter_id: str | None = None
) -> dict[str, Any]:
    event: dict[str, Any] = {"action": "create_chapter", "title": title, "content": content}
    if chapter_number is not None:
        event["chapter_number"] = chapter_number
    if chapter_id:
        event["id"] = chapter_id
    return event


def update_chapter(
    content: str,
    chapter_id: str | None = None,
    chapter_number: int | None = None,
    title: str | None = None,
) -> dict[str, Any]:
    event: dict[str, Any] = {"action": "update_chapter", "content": content}
    if chapter_id:
        event["id"] = chapter_id
    if chapter_number is not None:
        event["chapter_number"] = chapter_number
    if title:
        event["title"] = title
    return event


def convert_to_manhwa(panel_script: str, chapter_id: str | None = None) -> dict[str, Any]:
    event: dict[str, Any] = {"action": "convert_to_manhwa", "panel_script": panel_script}
    if chapter_id:
        event["chapter_id"] = chapter_id
    return event


def upsert(kind: str, item: dict[str, Any], created: bool) -> dict[str, Any]:
    return {"action": f"upsert_{kind}", "item": item, "created": created}


def image_job(panel_id: str, job_id: str) -> dict[str, Any]:
    return {"type": "image_job", "status": "queued", "panelId": panel_id, "jobId": job_id}

"""Project records and settings (genre, core conflict, free-form settingsJson)."""

from pathlib import Path
from typing import Any

from inkverse.traits import deep_merge

from .core import new_id, now_iso, projects_dir, read_json, write_json

# Fields a settings change may touch. Object-valued fields deep-merge.
SETTINGS_FIELDS = ("title", "description", "genre", "coreConflict", "settingsJson")


def _project_path(project_id: str) -> Path:
    return projects_dir() / f"{project_id}.json"


def create_project(owner_id: str, title: str, description: str = "") -> dict[str, Any]:
    """Create a project owned by `owner_id` with empty entity lists."""
    project = {
        "id": new_id(),
        "owner_id": owner_id,
        "title": title,
        "description": description,
        "genre": None,
        "coreConflict": None,
        "settingsJson": {},
        "created_at": now_iso(),
    }
    write_json(_project_path(project["id"]), project)
    (projects_dir() / project["id"]).mkdir(exist_ok=True)
    return project


def get_project(project_id: str) -> dict[str, Any] | None:
    return read_json(_project_path(project_id), None)


def update_project_settings(project_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
    """Apply a confirmed settings change. Returns the updated project, or None if missing.

    Object-valued fields are deep-merged with the stored object (nested
    objects recurse, arrays replace wholesale); scalar fields overwrite.
    Keys outside SETTINGS_FIELDS are ignored.
    """
    project = get_project(project_id)
    if project is None:
        return None
    for key in SETTINGS_FIELDS:
        if key not in changes:
            continue
        incoming = changes[key]
        current = project.get(key)
        if isinstance(incoming, dict) and isinstance(current, dict):
            project[key] = deep_merge(current, incoming)
        else:
            project[key] = incoming
    project["updated_at"] = now_iso()
    write_json(_project_path(project_id), project)
    return project

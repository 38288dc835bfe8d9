"""Character and world-entry storage, keyed by case-insensitive name within a project."""

from pathlib import Path
from typing import Any

from .core import new_id, now_iso, projects_dir, read_json, write_json

ENTITY_KINDS = ("character", "world")

# Scalar fields each kind carries besides name and traits.
ENTITY_FIELDS = {
    "character": ("role", "summary"),
    "world": ("summary",),
}


def _entities_path(project_id: str, kind: str) -> Path:
    if kind not in ENTITY_KINDS:
        raise ValueError(f"Unknown entity kind {kind!r}")
    filename = "characters.json" if kind == "character" else "world.json"
    return projects_dir() / project_id / filename


def list_entities(project_id: str, kind: str) -> list[dict[str, Any]]:
    return read_json(_entities_path(project_id, kind), [])


def find_entity_by_name(project_id: str, kind: str, name: str) -> dict[str, Any] | None:
    """Case-insensitive exact name lookup."""
    wanted = name.strip().lower()
    if not wanted:
        return None
    for entity in list_entities(project_id, kind):
        if (entity.get("name") or "").strip().lower() == wanted:
            return entity
    return None


def create_entity(project_id: str, kind: str, fields: dict[str, Any]) -> dict[str, Any]:
    entities = list_entities(project_id, kind)
    entity: dict[str, Any] = {
        "id": new_id(),
        "project_id": project_id,
        "name": fields.get("name") or ("Unnamed" if kind == "character" else "Untitled"),
        "traits": fields.get("traits"),
        "created_at": now_iso(),
    }
    for key in ENTITY_FIELDS[kind]:
        entity[key] = fields.get(key)
    entities.append(entity)
    write_json(_entities_path(project_id, kind), entities)
    return entity


def update_entity(
    project_id: str, kind: str, entity_id: str, fields: dict[str, Any]
) -> dict[str, Any] | None:
    """Overwrite provided (non-None) fields. Returns None if no entity matched."""
    entities = list_entities(project_id, kind)
    for entity in entities:
        if entity["id"] == entity_id:
            for key in ("name", "traits", *ENTITY_FIELDS[kind]):
                if fields.get(key) is not None:
                    entity[key] = fields[key]
            entity["updated_at"] = now_iso()
            write_json(_entities_path(project_id, kind), entities)
            return entity
    return None

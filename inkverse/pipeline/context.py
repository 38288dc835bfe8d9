"""Context assembly: persona policy, DB truth and memory layers for one generation.

The system prompt is the chat type's persona template followed by the
grounding block (rolling summary, referenced records, chapter snapshot,
target chapter). Messages are the recent turn history, then relevant older
turns not already in that history, then the current user message.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from inkverse import storage
from inkverse.llm import CompletionClient
from inkverse.memory import MemoryStore
from inkverse.models import ChapterTarget, EngineConfig
from inkverse.prompts import CONTEXT_TEMPLATE, PERSONA_TEMPLATES, render_prompt

from .extractors import extract_references
from .mediator import refusal_message

logger = logging.getLogger(__name__)

ENTITY_JSON_CHARS = 200000

_WS_RE = re.compile(r"\s+")


@dataclass
class PromptContext:
    system_prompt: str
    messages: list[dict[str, str]] = field(default_factory=list)
    chapter_count: int = 0
    target: dict[str, Any] | None = None


def summarize_chapter(content: str, limit: int) -> str:
    text = _WS_RE.sub(" ", content or "").strip()
    return text if len(text) <= limit else text[:limit] + "…"


def _public(entity: dict[str, Any]) -> dict[str, Any]:
    """Entity fields safe to show the model: no ids, no bookkeeping."""
    return {k: v for k, v in entity.items() if k not in ("id", "project_id", "created_at", "updated_at")}


def _world_body(entry: dict[str, Any]) -> str:
    if entry.get("summary"):
        return entry["summary"]
    if entry.get("traits"):
        return json.dumps(entry["traits"], ensure_ascii=False)[:300]
    return ""


def _pick(entities: list[dict[str, Any]], names: list[str], limit: int) -> list[dict[str, Any]]:
    wanted = {n.lower() for n in names}
    return [e for e in entities if (e.get("name") or "").lower() in wanted][:limit]


def _persona_context(project, chat_type, characters, world) -> dict[str, Any]:
    ctx: dict[str, Any] = {
        "project": {
            "title": project.get("title") or "",
            "genre": project.get("genre") or "",
            "coreConflict": project.get("coreConflict") or "",
        },
        "characters": [
            {"name": c.get("name", ""), "role": c.get("role") or "", "summary": c.get("summary") or ""}
            for c in characters
        ],
        "world": [{"name": w.get("name", ""), "body": _world_body(w)} for w in world],
        "refusal": refusal_message(chat_type),
        "entity_json": "",
    }
    own = {"character": characters, "world": world}.get(chat_type)
    if own:
        ctx["entity_json"] = json.dumps([_public(e) for e in own], ensure_ascii=False, indent=2)[:ENTITY_JSON_CHARS]
    return ctx


async def assemble(
    *,
    llm: CompletionClient,
    memory: MemoryStore,
    config: EngineConfig,
    project: dict[str, Any],
    chat: dict[str, Any],
    message: str,
    mode: str,
    target: ChapterTarget | None = None,
    exclude_turn_id: str | None = None,
) -> PromptContext:
    """Build the system prompt and message list for one muse generation."""
    project_id = project["id"]
    chat_id = chat["id"]
    chat_type = chat["chat_type"]

    characters = storage.list_entities(project_id, "character")
    world = storage.list_entities(project_id, "world")
    chapters = storage.list_chapters(project_id)

    persona = render_prompt(
        PERSONA_TEMPLATES[chat_type], _persona_context(project, chat_type, characters, world)
    )

    json_blocks: list[str] = []
    target_block = None
    others: list[dict[str, str]] = []
    if chat_type == "plot":
        if characters or world:
            char_names, world_names = await extract_references(llm, chat_id, message, config)
            if picked := _pick(characters, char_names, config.reference_limit):
                json_blocks.append("[REFERENCED CHARACTERS JSON]\n" + json.dumps([_public(c) for c in picked], ensure_ascii=False))
            if picked := _pick(world, world_names, config.reference_limit):
                json_blocks.append("[REFERENCED WORLD JSON]\n" + json.dumps([_public(w) for w in picked], ensure_ascii=False))
        target_id = None
        if target is not None and target.chapter is not None:
            target_id = target.chapter["id"]
            target_block = {
                "title": target.chapter.get("title") or "",
                "content": (target.chapter.get("content") or "")[: config.target_chapter_chars],
            }
        others = [
            {"title": c.get("title") or "", "summary": summarize_chapter(c.get("content") or "", config.chapter_summary_chars)}
            for c in chapters
            if c["id"] != target_id
        ]

    grounding = render_prompt(CONTEXT_TEMPLATE, {
        "summary": memory.get_summary(chat_id) or "",
        "json_blocks": json_blocks,
        "chat_type": chat_type,
        "mode": mode,
        "chapter_count": str(len(chapters)),
        "chapters": [{"number": str(i + 1), "title": c.get("title") or ""} for i, c in enumerate(chapters)],
        "target": target_block,
        "others": others,
    })

    history = storage.get_recent_turns(chat_id, config.history_turns, exclude_id=exclude_turn_id)
    messages = [
        {"role": "assistant" if t["role"] == "assistant" else "user", "content": t["content"]}
        for t in history
    ]
    seen = {m["content"] for m in messages} | {message}
    for item in memory.retrieve_relevant(chat_id, message, config.relevant_limit):
        if item["content"] not in seen:
            seen.add(item["content"])
            messages.append(item)
    messages.append({"role": "user", "content": message})

    logger.debug(
        "assembled context chat=%s type=%s chapters=%d history=%d messages=%d",
        chat_id, chat_type, len(chapters), len(history), len(messages),
    )
    return PromptContext(
        system_prompt=f"{persona}\n{grounding}",
        messages=messages,
        chapter_count=len(chapters),
        target=target_block,
    )

"""Write Mediator: the only path from a classified intent to a story write.

Two gates apply to every write, in order:
  containment  a chat type writes exactly one entity kind (plot: chapters and
               genre/coreConflict proposals; character: characters;
               world: world entries). Anything else is refused with text
               naming the chat type that owns the write.
  mode         preview never writes and yields a single preview text event;
               commit performs the write and yields a structured event.

Refusals, previews and missing-field prompts are ordinary outcomes, not
exceptions. A commit whose write matches no row yields an error event.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from inkverse import storage
from inkverse.models import ChapterTarget, EntityDraft, OperatingMode
from inkverse.traits import deep_merge

from . import events
from .resolver import default_title

logger = logging.getLogger(__name__)

CHAT_LABELS = {"plot": "Plot", "character": "Character", "world": "World"}

# Write kind -> the chat type that owns it
OWNER_CHAT = {
    "chapter": "plot",
    "settings": "plot",
    "character": "character",
    "world": "world",
}

_FORBIDDEN = {
    "plot": "Character/World changes",
    "character": "Chapter, plot settings and World changes",
    "world": "Chapter, plot settings and Character changes",
}

_MODE_TAG_RE = re.compile(r"^\s*\[MODE\][^\n]*\n?")

SWITCH_NOTE = "Switch to commit mode to apply."


def refusal_message(chat_type: str, target_chat: str | None = None) -> str:
    label = CHAT_LABELS[chat_type]
    if target_chat:
        where = f"Open the {CHAT_LABELS[target_chat]} chat to proceed."
    else:
        others = "/".join(v for k, v in CHAT_LABELS.items() if k != chat_type)
        where = f"Open the appropriate chat type ({others}) to proceed."
    return (
        f"Warning: This is a {label} chat. {_FORBIDDEN[chat_type]} are forbidden here. "
        f"{where} I can discuss {chat_type} implications only."
    )


def strip_mode_tag(text: str) -> str:
    """Drop a leading "[MODE] ..." line echoed by the model."""
    return _MODE_TAG_RE.sub("", text, count=1).strip()


@dataclass
class Outcome:
    """Events to emit plus the assistant transcript line to persist."""

    events: list[dict[str, Any]] = field(default_factory=list)
    transcript: str = ""
    wrote: bool = False


def _text_outcome(message: str) -> Outcome:
    return Outcome(events=[events.text(message)], transcript=message)


def _error_outcome(message: str) -> Outcome:
    return Outcome(events=[events.error(message)], transcript=f"[error] {message}")


def _preview(heading: str, lines: list[str]) -> Outcome:
    body = "\n".join(f"- {l}" for l in lines)
    return _text_outcome(f"{heading} (not applied in preview mode):\n{body}\n\n{SWITCH_NOTE}")


class WriteMediator:
    def __init__(self, project_id: str, chat_type: str, mode: OperatingMode = "preview") -> None:
        self.project_id = project_id
        self.chat_type = chat_type
        self.mode = mode

    @property
    def committing(self) -> bool:
        return self.mode == "commit"

    def allows(self, kind: str) -> bool:
        return OWNER_CHAT.get(kind) == self.chat_type

    def refuse(self, target_chat: str | None = None) -> Outcome:
        logger.info("refused cross-domain write in %s chat (owner: %s)", self.chat_type, target_chat)
        return _text_outcome(refusal_message(self.chat_type, target_chat))

    def _guard(self, kind: str) -> Outcome | None:
        if self.allows(kind):
            return None
        return self.refuse(OWNER_CHAT.get(kind))

    # ── Settings ─────────────────────────────────────────

    def propose_settings(self, changes: dict[str, str]) -> Outcome:
        """Settings are never written here; commit mode hands a diff to the confirm step."""
        if refused := self._guard("settings"):
            return refused
        if not self.committing:
            return _preview("Preview settings", [f"{k}: {v}" for k, v in changes.items()])
        return Outcome(events=[events.confirm_settings(changes)], transcript="[settings proposal ready]")

    # ── Characters / world entries ───────────────────────

    def upsert_entity(self, kind: str, draft: EntityDraft, fallback_name: str | None = None) -> Outcome:
        if refused := self._guard(kind):
            return refused
        label = CHAT_LABELS[kind]
        name = draft.name or fallback_name
        if not name:
            return _text_outcome(
                f"{label} name is missing. Tell me the name (for example @\"Mira Vale\") and I will save it."
            )
        existing = storage.find_entity_by_name(self.project_id, kind, name)

        if not self.committing:
            lines = [f"name: {name}" + (" (updates existing record)" if existing else " (new record)")]
            for key in storage.ENTITY_FIELDS[kind]:
                if value := getattr(draft, key):
                    lines.append(f"{key}: {value}")
            if draft.traits:
                lines.append(f"traits: {json.dumps(draft.traits, ensure_ascii=False)}")
            return _preview(f"Preview {kind}", lines)

        fields: dict[str, Any] = {key: getattr(draft, key) for key in storage.ENTITY_FIELDS[kind]}
        if existing:
            if draft.traits:
                fields["traits"] = deep_merge(existing.get("traits") or {}, draft.traits)
            item = storage.update_entity(self.project_id, kind, existing["id"], fields)
            if item is None:
                return _error_outcome(f"Failed to update {kind} \"{name}\": the record no longer exists.")
            created = False
        else:
            item = storage.create_entity(self.project_id, kind, {**fields, "name": name, "traits": draft.traits})
            created = True
        logger.info("%s %s %s in project %s", "created" if created else "updated", kind, item["id"], self.project_id)
        public = {k: v for k, v in item.items() if k != "project_id"}
        return Outcome(
            events=[events.upsert(kind, public, created)],
            transcript=f"[{kind} saved: {item['name']}]",
            wrote=True,
        )

    # ── Chapters ─────────────────────────────────────────

    def _create_chapter(self, title: str, content: str, transcript: str) -> Outcome:
        try:
            chapter = storage.create_chapter(self.project_id, title, content)
        except OSError:
            logger.exception("failed to create chapter in project %s", self.project_id)
            return _error_outcome("Failed to save chapter.")
        number = len(storage.list_chapters(self.project_id))
        logger.info("created chapter %s (#%d) in project %s", chapter["id"], number, self.project_id)
        return Outcome(
            events=[events.create_chapter(title, content, chapter_number=number, chapter_id=chapter["id"])],
            transcript=transcript,
            wrote=True,
        )

    def _update_chapter(self, target: ChapterTarget, fields: dict[str, Any]) -> dict[str, Any] | Outcome:
        try:
            chapter = storage.update_chapter(self.project_id, target.chapter["id"], fields)
        except OSError:
            logger.exception("failed to update chapter %s", target.chapter["id"])
            return _error_outcome("Failed to update chapter.")
        if chapter is None:
            return _error_outcome("Chapter not found; nothing was updated.")
        logger.info("updated chapter %s in project %s", chapter["id"], self.project_id)
        return chapter

    def _rewrite(self, target: ChapterTarget, content: str, transcript: str) -> Outcome:
        title = target.title if target.title_is_explicit else None
        result = self._update_chapter(target, {"content": content, "title": title})
        if isinstance(result, Outcome):
            return result
        return Outcome(
            events=[events.update_chapter(content, chapter_id=result["id"], chapter_number=target.number, title=result["title"])],
            transcript=transcript,
            wrote=True,
        )

    def save_draft(self, draft: str, target: ChapterTarget | None) -> Outcome:
        """Persist a previously generated draft: update the resolved chapter or create one."""
        if refused := self._guard("chapter"):
            return refused
        content = strip_mode_tag(draft)
        existing = target is not None and target.chapter is not None
        if not self.committing:
            if existing:
                action = f"update chapter {target.number} \"{target.chapter['title']}\""
            else:
                action = f"create chapter \"{default_title(None, target.title if target else None)}\""
            return _preview("Preview chapter save", [action, f"length: {len(content)} characters"])
        if existing:
            return self._rewrite(target, content, "[chapter updated]")
        return self._create_chapter(default_title(None, target.title if target else None), content, "[chapter saved]")

    def author_chapter(self, content: str, naming: ChapterTarget | None) -> Outcome:
        """A new chapter from generated prose. Authoring never overwrites."""
        if refused := self._guard("chapter"):
            return refused
        title = default_title(naming.number if naming else None, naming.title if naming else None)
        if not self.committing:
            return _text_outcome(f"Preview only: this draft was not saved as \"{title}\". {SWITCH_NOTE}")
        return self._create_chapter(title, strip_mode_tag(content), "[chapter draft ready]")

    def rewrite_chapter(self, content: str, target: ChapterTarget | None) -> Outcome:
        if refused := self._guard("chapter"):
            return refused
        if target is None or target.chapter is None:
            return _text_outcome(
                "I couldn't tell which chapter to rewrite. Mention it like @chapter2 or @\"Title\"."
            )
        if not self.committing:
            return _text_outcome(
                f"Preview only: chapter {target.number} \"{target.chapter['title']}\" was not changed. {SWITCH_NOTE}"
            )
        return self._rewrite(target, strip_mode_tag(content), "[chapter rewrite ready]")

    def convert_chapter(self, panel_script: str, target: ChapterTarget | None) -> Outcome:
        if refused := self._guard("chapter"):
            return refused
        if not self.committing:
            return _text_outcome(f"Preview only: the panel script was not saved. {SWITCH_NOTE}")
        panel_script = strip_mode_tag(panel_script)
        chapter_id = None
        if target is not None and target.chapter is not None:
            result = self._update_chapter(target, {"panel_script": panel_script})
            if isinstance(result, Outcome):
                return result
            chapter_id = result["id"]
        return Outcome(
            events=[events.convert_to_manhwa(panel_script, chapter_id=chapter_id)],
            transcript="[convert_to_manhwa proposal ready]",
            wrote=chapter_id is not None,
        )

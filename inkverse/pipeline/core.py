"""Streaming Response Emitter: one user message in, an ordered event stream out.

ChatTurn.events() drives one turn:

  RECEIVED     log the user turn (turn log + memory)
  containment  cross-domain write requests are refused before anything else
  PRE-PASS     character/world chats: entity extraction -> upsert
               plot chats: intent chain; settings short-circuit; save-draft
  STREAMING    muse generation; tokens are withheld when a chapter action
               will be committed so the prose is delivered once, structured
  FINALIZING   persist the assistant turn, hand chapter actions to the
               mediator, enqueue image regeneration
  done         always exactly one, after an error event if one occurred

A client disconnect cancels the turn: the partial assistant text is never
persisted and the cancellation propagates.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from inkverse import storage
from inkverse.cache import ImageJobQueue
from inkverse.llm import CompletionClient, LLMError
from inkverse.memory import MemoryStore
from inkverse.models import ChapterTarget, EngineConfig, IntentResult, OperatingMode
from inkverse.tasks import BackgroundRunner

from . import events
from .context import assemble
from .extractors import derive_settings, extract_entity_draft
from .intents import CHAPTER_ACTIONS, classify_intent, detect_cross_domain, detect_save_draft
from .mediator import Outcome, WriteMediator
from .resolver import ChapterHints, mine_chapter_request, parse_mentions, resolve_chapter

logger = logging.getLogger(__name__)

# Turn-log stand-ins for structured payloads; memory keeps the full text
PLACEHOLDERS = {
    "create_chapter": "[chapter draft ready]",
    "update_chapter": "[chapter rewrite ready]",
    "convert_to_manhwa": "[convert_to_manhwa proposal ready]",
}


@dataclass
class ChatServices:
    """Long-lived collaborators shared by every turn."""

    llm: CompletionClient
    memory: MemoryStore
    config: EngineConfig
    temperature: float = 0.7
    queue: ImageJobQueue | None = None
    runner: BackgroundRunner = field(default_factory=BackgroundRunner)


@dataclass
class ChatRequest:
    chat: dict[str, Any]
    project: dict[str, Any]
    message: str
    mode: OperatingMode = "preview"
    mention_number: int | None = None
    mention_title: str | None = None
    regenerate_panel_id: str | None = None
    user_id: str | None = None


class ChatTurn:
    def __init__(self, services: ChatServices, request: ChatRequest) -> None:
        self.services = services
        self.request = request
        self.chat_id: str = request.chat["id"]
        self.project_id: str = request.project["id"]
        self.chat_type: str = request.chat["chat_type"]
        self.message = request.message.strip()
        self.mediator = WriteMediator(self.project_id, self.chat_type, request.mode)
        self.user_turn_id: str | None = None
        self.message_id: str | None = None

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        try:
            async with aclosing(self._run()) as stream:
                async for event in stream:
                    yield event
        except LLMError as e:
            logger.warning("generation failed for chat %s: %s", self.chat_id, e)
            yield events.error(str(e))
        except Exception:
            logger.exception("chat turn failed for chat %s", self.chat_id)
            yield events.error("Unexpected error while handling the message.")
        yield events.done(self.message_id)

    # ── Persistence ──────────────────────────────────────

    async def _persist_assistant(self, transcript: str, full_text: str | None = None) -> None:
        if not transcript.strip():
            return
        turn = storage.append_turn(self.chat_id, "assistant", transcript)
        self.message_id = turn["id"]
        await self.services.memory.append(self.chat_id, "assistant", full_text or transcript)

    def _log_write(self, outcome: Outcome) -> None:
        if outcome.wrote:
            logger.info("chat %s (%s) committed a write to project %s", self.chat_id, self.chat_type, self.project_id)

    async def _emit(self, outcome: Outcome) -> AsyncIterator[dict[str, Any]]:
        self._log_write(outcome)
        for event in outcome.events:
            yield event
        await self._persist_assistant(outcome.transcript)

    # ── Resolution helpers ───────────────────────────────

    def _hints(self, intent: IntentResult | None = None, **extra: Any) -> ChapterHints:
        number, title = parse_mentions(self.message)
        args = intent.args if intent else {}
        mined_number = args.get("chapter_number")
        return ChapterHints(
            number=self.request.mention_number or number,
            title=self.request.mention_title or title,
            message=self.message,
            mined_number=mined_number if isinstance(mined_number, int) else None,
            mined_title=args.get("title") if isinstance(args.get("title"), str) else None,
            **extra,
        )

    def _naming(self, intent: IntentResult) -> ChapterTarget:
        """Number and title for a chapter about to be authored."""
        number, title = mine_chapter_request(self.message)
        args = intent.args
        if isinstance(args.get("chapter_number"), int):
            number = args["chapter_number"]
        if isinstance(args.get("title"), str) and args["title"].strip():
            title = args["title"].strip()
        return ChapterTarget(number=number, title=title, source="new", title_is_explicit=bool(title))

    async def _save_previous_draft(self) -> Outcome:
        memory = self.services.memory
        draft = await memory.get_last_assistant_draft(self.chat_id)
        if not draft:
            return Outcome(
                events=[events.text("No prior chapter draft found to save. Ask me to write the chapter first.")],
                transcript="No prior chapter draft found to save.",
            )
        recent_users = [
            t["content"]
            for t in reversed(storage.get_recent_turns(self.chat_id, 30, role="user", exclude_id=self.user_turn_id))
        ]
        target = resolve_chapter(
            storage.list_chapters(self.project_id),
            self._hints(recent_user_turns=recent_users, draft=draft),
            use_history=True,
            use_draft=True,
        )
        terms = []
        if target is not None:
            if target.number:
                terms.append(f"chapter {target.number}")
            if target.title:
                terms.append(target.title)
        draft = memory.find_matching_draft(self.chat_id, terms) or draft
        return self.mediator.save_draft(draft, target)

    def _enqueue_image(self, prompt: str) -> dict[str, Any] | None:
        panel_id = self.request.regenerate_panel_id
        queue = self.services.queue
        if queue is None:
            logger.warning("image queue unavailable; skipping regeneration for panel %s", panel_id)
            return None
        job_id = storage.new_id()
        data = {
            "projectId": self.project_id,
            "panelId": panel_id,
            "prompt": prompt,
            "userId": self.request.user_id,
        }
        self.services.runner.spawn(queue.enqueue(data, job_id=job_id), f"image-job:{panel_id}")
        # Acknowledges the request; the push itself happens in the background
        return events.image_job(panel_id, job_id)

    # ── Turn state machine ───────────────────────────────

    async def _run(self) -> AsyncIterator[dict[str, Any]]:
        svc = self.services
        message = self.message

        turn = storage.append_turn(self.chat_id, "user", message, panel_id=self.request.regenerate_panel_id)
        self.user_turn_id = turn["id"]
        await svc.memory.append(self.chat_id, "user", message)

        if owner := detect_cross_domain(message, self.chat_type):
            async for event in self._emit(self.mediator.refuse(owner)):
                yield event
            return

        intent: IntentResult | None = None
        if self.chat_type in ("character", "world"):
            draft = await extract_entity_draft(svc.llm, self.chat_type, self.chat_id, message, svc.config)
            if draft is not None:
                outcome = self.mediator.upsert_entity(self.chat_type, draft, fallback_name=self._hints().title)
                async for event in self._emit(outcome):
                    yield event
                return
        else:
            summary = svc.memory.get_summary(self.chat_id)
            intent = await classify_intent(svc.llm, message, summary, svc.config.intent_confidence)
            if intent is not None and intent.action == "set_settings":
                changes = await derive_settings(svc.llm, svc.memory, self.chat_id, message, svc.config)
                if changes:
                    async for event in self._emit(self.mediator.propose_settings(changes)):
                        yield event
                    return
                if intent.source == "regex":
                    yield events.error("Failed to derive settings from the recent conversation.")
                    return
                intent = None
            if detect_save_draft(message):
                async for event in self._emit(await self._save_previous_draft()):
                    yield event
                return

        action = intent.action if intent is not None and intent.action in CHAPTER_ACTIONS else None
        target: ChapterTarget | None = None
        if self.chat_type == "plot":
            target = resolve_chapter(storage.list_chapters(self.project_id), self._hints(intent))
            if action == "update_chapter" and self.mediator.committing and (target is None or target.chapter is None):
                async for event in self._emit(self.mediator.rewrite_chapter("", None)):
                    yield event
                return

        ctx = await assemble(
            llm=svc.llm,
            memory=svc.memory,
            config=svc.config,
            project=self.request.project,
            chat=self.request.chat,
            message=message,
            mode=self.request.mode,
            target=target,
            exclude_turn_id=self.user_turn_id,
        )

        withhold = action is not None and self.mediator.committing
        parts: list[str] = []
        async for delta in svc.llm.stream("muse", ctx.system_prompt, ctx.messages, svc.temperature):
            if not delta:
                continue
            parts.append(delta)
            if not withhold:
                yield events.text(delta)
        text = "".join(parts)

        await self._persist_assistant(PLACEHOLDERS[action] if action else text, full_text=text)

        if action is not None and text.strip():
            if action == "create_chapter":
                outcome = self.mediator.author_chapter(text, self._naming(intent))
            elif action == "update_chapter":
                outcome = self.mediator.rewrite_chapter(text, target)
            else:
                outcome = self.mediator.convert_chapter(text, target)
            self._log_write(outcome)
            for event in outcome.events:
                yield event

        if self.request.regenerate_panel_id and text.strip():
            if (event := self._enqueue_image(text)) is not None:
                yield event

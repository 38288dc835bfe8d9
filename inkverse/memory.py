"""Layered conversational memory for one chat session.

Layers:
  memory log      durable copy of every turn's full text (storage.memory),
                  trimmed to the newest `memory_size` entries
  recent window   newest `window_size` turns in Redis when configured;
                  otherwise rebuilt from the memory log
  rolling summary lossy memo regenerated from the newest `summary_slice`
                  turns whenever the window grows past `summary_trigger`

Only the memory-log write is required to succeed; window mirroring and
summary regeneration are best-effort and logged on failure.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from inkverse import storage
from inkverse.cache import RedisWindow
from inkverse.llm import CompletionClient
from inkverse.models import EngineConfig
from inkverse.prompts import summarizer_prompt
from inkverse.tasks import BackgroundRunner

logger = logging.getLogger(__name__)

# Short acknowledgments stored instead of structured payloads, e.g. "[chapter draft ready]"
PLACEHOLDER_RE = re.compile(r"^\[[^\]]+\]")

_TERM_SPLIT_RE = re.compile(r"[^a-z0-9]+")


def is_placeholder(text: str) -> bool:
    return bool(PLACEHOLDER_RE.match(text))


def keyword_terms(query: str, max_terms: int = 6) -> list[str]:
    """Significant lowercase keywords (length >= 4) of a query, in order of appearance."""
    terms = [t for t in _TERM_SPLIT_RE.split((query or "").lower()) if len(t) >= 4]
    return terms[:max_terms]


class MemoryStore:
    def __init__(
        self,
        llm: CompletionClient,
        config: EngineConfig,
        window: RedisWindow | None = None,
        runner: BackgroundRunner | None = None,
    ) -> None:
        self._llm = llm
        self._config = config
        self._window = window
        self._runner = runner or BackgroundRunner()

    @property
    def runner(self) -> BackgroundRunner:
        return self._runner

    # ── Writes ───────────────────────────────────────────

    async def append(self, chat_id: str, role: str, content: str) -> None:
        """Log one turn; mirror it into the window; maybe schedule a summary refresh."""
        content = (content or "").strip()
        if not content:
            return
        storage.append_memory(
            chat_id, role, content[: self._config.draft_max_chars],
            keep=self._config.memory_size,
        )
        length = await self._mirror(chat_id, role, content)
        if length > self._config.summary_trigger:
            self._runner.spawn(self.refresh_summary(chat_id), f"summary:{chat_id}")

    async def _mirror(self, chat_id: str, role: str, content: str) -> int:
        """Push into the window and return its length (degraded: memory-log length)."""
        if self._window is not None:
            try:
                return await self._window.push(chat_id, role, content)
            except Exception:
                logger.warning("window mirror failed for chat %s", chat_id, exc_info=True)
        return min(len(storage.get_memory(chat_id)), self._config.window_size)

    async def refresh_summary(self, chat_id: str) -> bool:
        """Regenerate the rolling summary from the newest turns. Returns True if stored."""
        items = await self.recent(chat_id, self._config.summary_slice)
        text = "\n".join(f"{i.get('role', '')}: {i.get('content', '')}" for i in items)
        summary = await self._llm.complete(
            "summarizer",
            summarizer_prompt(self._config.summary_words),
            text[: self._config.summary_input_chars],
            temperature=0.2,
        )
        summary = summary.strip()
        if not summary:
            return False
        storage.set_summary(chat_id, summary)
        logger.info("rolling summary refreshed chat=%s turns=%d", chat_id, len(items))
        return True

    # ── Reads ────────────────────────────────────────────

    async def recent(self, chat_id: str, count: int) -> list[dict[str, Any]]:
        """The recent window: newest `count` turns, oldest first."""
        if self._window is not None:
            try:
                return await self._window.recent(chat_id, count)
            except Exception:
                logger.warning("window read failed for chat %s", chat_id, exc_info=True)
        return storage.get_memory(chat_id)[-count:]

    def get_summary(self, chat_id: str) -> str | None:
        return storage.get_summary(chat_id)

    def retrieve_relevant(self, chat_id: str, query: str, limit: int = 5) -> list[dict[str, str]]:
        """Keyword retrieval over the memory log, newest first, at most max(3, limit) turns.

        With no significant keyword in `query` the newest turns are returned.
        """
        cap = max(3, limit)
        terms = keyword_terms(query)
        newest_first = list(reversed(storage.get_memory(chat_id)))
        if terms:
            newest_first = [
                e for e in newest_first
                if any(t in (e.get("content") or "").lower() for t in terms)
            ]
        return [
            {"role": "assistant" if e.get("role") == "assistant" else "user", "content": e.get("content", "")}
            for e in newest_first[:cap]
        ]

    def _is_draft(self, text: str, min_chars: int) -> bool:
        return len(text) >= min_chars and not is_placeholder(text)

    async def get_last_assistant_draft(self, chat_id: str) -> str | None:
        """Most recent long-form assistant turn that is not a bracketed placeholder."""
        limit = self._config.draft_max_chars
        min_chars = self._config.draft_min_chars
        for item in reversed(await self.recent(chat_id, self._config.summary_slice)):
            text = str(item.get("content") or "")
            if item.get("role") == "assistant" and self._is_draft(text, min_chars):
                return text[:limit]
        if self._window is None:
            return None
        # Window lost or evicted: fall back to the memory log
        assistant = [e for e in storage.get_memory(chat_id) if e.get("role") == "assistant"]
        for entry in reversed(assistant[-50:]):
            text = str(entry.get("content") or "")
            if self._is_draft(text, min_chars):
                return text[:limit]
        return None

    def find_matching_draft(self, chat_id: str, terms: list[str]) -> str | None:
        """Newest assistant draft mentioning any of `terms` (case-insensitive), if any."""
        wanted = [t.lower() for t in terms if t]
        if not wanted:
            return None
        matches = [
            str(e.get("content") or "")
            for e in reversed(storage.get_memory(chat_id))
            if e.get("role") == "assistant"
            and any(t in str(e.get("content") or "").lower() for t in wanted)
        ][:3]
        for text in matches:
            if self._is_draft(text, self._config.draft_match_min_chars):
                return text[: self._config.draft_max_chars]
        return None

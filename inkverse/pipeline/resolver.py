"""Chapter reference resolution.

A chapter can be referenced by id, by position ("@chapter2", 1-based), by
title (@"The Fall", case-insensitive), or implicitly through the wording of
the request ("rewrite chapter 3", "write chapter 4: Embers"). Resolution
order, first match wins:

  1. explicit chapter id
  2. explicit position hint, clamped into 1..count
  3. explicit title hint
  4. number or title mined from the current message (in range only)
  5. number or title mined from recent user turns (save flow only)
  6. chapter naming derived from the draft itself (save flow only)

Mined numbers are never clamped: an out-of-range "chapter 9" names a new
chapter instead of silently overwriting the last one.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from inkverse.models import ChapterTarget

MENTION_NUMBER_RE = re.compile(r"@chapter[_\s-]?(\d+)\b", re.I)
MENTION_TITLE_RE = re.compile(r'@"([^"]+)"')
WRITE_REQUEST_RE = re.compile(
    r"\b(?:write|draft|create)\s+(?:(?:a|the|new|next)\s+)*chapter(?:\s+(\d+))?"
    r"(?:\s*[:\u2014\u2013-]\s*([^\n\r]+))?",
    re.I,
)
REWRITE_REQUEST_RE = re.compile(r"\b(?:rewrite|revise|edit)\s+(?:the\s+)?chapter\s+(\d+)", re.I)
CHAPTER_NUMBER_RE = re.compile(r"\bchapter\s+(\d+)\b", re.I)
QUOTED_TITLE_RE = re.compile(r'(?<!@)"([^"\n]{1,120})"')
HEADING_RE = re.compile(r"^\s*#{1,6}\s+(.+?)\s*#*\s*$")
DRAFT_CHAPTER_RE = re.compile(r"^\W*chapter\s+(\d+)\b[\s:\u2014\u2013-]*(.*)$", re.I)

UNTITLED = "Untitled Chapter"


@dataclass
class ChapterHints:
    """Everything the resolver may use to find a chapter."""

    chapter_id: str | None = None
    number: int | None = None  # explicit position, clamped
    title: str | None = None  # explicit title
    message: str = ""
    mined_number: int | None = None  # e.g. classifier args; in range only
    mined_title: str | None = None
    recent_user_turns: list[str] = field(default_factory=list)  # newest first
    draft: str | None = None


def _clean_title(text: str | None) -> str | None:
    if not text:
        return None
    text = text.strip().strip("\"'*").strip().rstrip(".")
    return text[:200] or None


def parse_mentions(text: str) -> tuple[int | None, str | None]:
    """Mention syntax in free text: (@chapterN number, @"Title" title)."""
    number = None
    if m := MENTION_NUMBER_RE.search(text or ""):
        number = int(m.group(1))
    title = None
    if m := MENTION_TITLE_RE.search(text or ""):
        title = _clean_title(m.group(1))
    return number, title


def mine_chapter_request(text: str) -> tuple[int | None, str | None]:
    """Chapter number and title implied by the wording of a request."""
    text = text or ""
    number: int | None = None
    title: str | None = None
    if m := WRITE_REQUEST_RE.search(text):
        number = int(m.group(1)) if m.group(1) else None
        title = _clean_title(m.group(2))
    if number is None and (m := REWRITE_REQUEST_RE.search(text) or CHAPTER_NUMBER_RE.search(text)):
        number = int(m.group(1))
    if title is None and (m := QUOTED_TITLE_RE.search(text)):
        title = _clean_title(m.group(1))
    return number, title


def derive_title_from_draft(draft: str) -> tuple[int | None, str | None]:
    """Chapter number and title from a draft's first heading or "Chapter N: ..." line."""
    lines = [l for l in (draft or "").splitlines() if l.strip()][:5]
    for line in lines:
        if m := HEADING_RE.match(line):
            heading = _clean_title(m.group(1))
            number = None
            if n := DRAFT_CHAPTER_RE.match(heading or ""):
                number = int(n.group(1))
            return number, heading
    for line in lines:
        if m := DRAFT_CHAPTER_RE.match(line):
            return int(m.group(1)), _clean_title(m.group(2))
    return None, None


def default_title(number: int | None, title: str | None = None) -> str:
    if title:
        return title
    return f"Chapter {number}" if number else UNTITLED


def _by_title(chapters: list[dict[str, Any]], title: str) -> tuple[int, dict] | None:
    wanted = title.strip().lower()
    for i, ch in enumerate(chapters):
        if (ch.get("title") or "").strip().lower() == wanted:
            return i, ch
    return None


def _matched(chapters, index: int, source: str, title: str | None = None) -> ChapterTarget:
    chapter = chapters[index]
    return ChapterTarget(
        chapter=chapter,
        number=index + 1,
        title=title or chapter.get("title"),
        source=source,
        title_is_explicit=bool(title),
    )


def _match_mined(chapters, number, title, source) -> ChapterTarget | None:
    if number is not None and 1 <= number <= len(chapters):
        return _matched(chapters, number - 1, source)
    if title and (hit := _by_title(chapters, title)):
        return _matched(chapters, hit[0], source)
    return None


def resolve_chapter(
    chapters: list[dict[str, Any]],
    hints: ChapterHints,
    *,
    use_history: bool = False,
    use_draft: bool = False,
) -> ChapterTarget | None:
    """Resolve hints against the project's chapters (creation order).

    Returns a target with `chapter` set when a stored chapter matched; a
    target with `chapter=None` carrying naming hints when the reference
    points at a chapter that does not exist yet; or None when nothing in
    the hints refers to a chapter at all.
    """
    if hints.chapter_id:
        for i, ch in enumerate(chapters):
            if ch["id"] == hints.chapter_id:
                return _matched(chapters, i, "id")

    if hints.number is not None and chapters:
        index = min(max(hints.number, 1), len(chapters)) - 1
        return _matched(chapters, index, "position")

    if hints.title and (hit := _by_title(chapters, hints.title)):
        return _matched(chapters, hit[0], "title")

    # Naming hints for a chapter that does not exist yet
    new_number = hints.number
    new_title = hints.title

    mined = [(hints.mined_number, hints.mined_title), mine_chapter_request(hints.message)]
    for number, title in mined:
        if target := _match_mined(chapters, number, title, "message"):
            return target
        new_number = new_number or number
        new_title = new_title or title

    if use_history:
        for text in hints.recent_user_turns:
            number, title = mine_chapter_request(text)
            mention_number, mention_title = parse_mentions(text)
            number = number or mention_number
            title = title or mention_title
            if number is None and title is None:
                continue
            if target := _match_mined(chapters, number, title, "history"):
                return target
            new_number = new_number or number
            new_title = new_title or title
            break

    title_is_explicit = bool(new_title)
    if use_draft and hints.draft:
        number, title = derive_title_from_draft(hints.draft)
        if new_number is None and new_title is None:
            if target := _match_mined(chapters, number, title, "draft"):
                return target
        new_number = new_number or number
        new_title = new_title or title
    elif new_number is None and new_title is None:
        return None

    return ChapterTarget(
        chapter=None,
        number=new_number,
        title=default_title(new_number, new_title),
        source="new",
        title_is_explicit=title_is_explicit,
    )

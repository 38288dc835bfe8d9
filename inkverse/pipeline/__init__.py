"""Intent-resolution and write-mediation pipeline.

Handles one user message inside a typed chat (plot, character, world):
  1. Log the user turn into the turn log and memory.
  2. Refuse write requests that belong to another chat type.
  3. Pre-pass:
     character/world  extract an entity draft; upsert it through the mediator.
     plot             classify intent (model stage, then patterns). Settings
                      intents derive a {genre, coreConflict} proposal and stop;
                      "save it" style requests persist the previous draft.
  4. Resolve the targeted chapter (id, @chapterN, @"Title", wording, history).
  5. Assemble context (persona policy, DB truth, summary, history, relevant
     turns) and stream the muse generation as text events.
  6. Chapter intents go to the mediator after the stream: previewed in
     preview mode, written and reported as structured events in commit mode.
  7. Persist the assistant turn and emit the terminal done event.

Helper stages (each a `complete` call with its own system prompt):
  intent_classifier    {action, args, confidence}
  settings_extractor   {genre?, coreConflict?}
  character_extractor  {name, role, summary, traits}
  world_extractor      {name, summary, traits}
  reference_extractor  {characters: [...], world: [...]}
  summarizer           rolling summary memo (memory layer)
"""

from . import events  # noqa: F401
from .context import PromptContext, assemble  # noqa: F401
from .core import PLACEHOLDERS, ChatRequest, ChatServices, ChatTurn  # noqa: F401
from .extractors import (  # noqa: F401
    derive_settings,
    extract_entity_draft,
    extract_references,
    heuristic_settings,
    normalize_settings,
    parse_json_object,
)
from .intents import (  # noqa: F401
    classify_intent,
    classify_with_patterns,
    detect_cross_domain,
    detect_save_draft,
    detect_settings_request,
)
from .mediator import Outcome, WriteMediator, refusal_message, strip_mode_tag  # noqa: F401
from .resolver import (  # noqa: F401
    ChapterHints,
    derive_title_from_draft,
    mine_chapter_request,
    parse_mentions,
    resolve_chapter,
)

"""Tests for the layered MemoryStore."""

from unittest.mock import AsyncMock

from conftest import StubLLM
from inkverse import storage
from inkverse.memory import MemoryStore, is_placeholder, keyword_terms
from inkverse.models import EngineConfig
from inkverse.tasks import BackgroundRunner

LONG_DRAFT = "# Chapter 3: Embers\n" + "The harbor burned all night. " * 30


def test_keyword_terms():
    assert keyword_terms("Where is the Glass Lens kept, Mira?") == ["where", "glass", "lens", "kept", "mira"]
    assert keyword_terms("a b c") == []
    assert len(keyword_terms("alpha bravo charlie delta echoes foxtrot golfer hotel")) == 6


def test_is_placeholder():
    assert is_placeholder("[chapter draft ready]")
    assert not is_placeholder("The [old] city")


async def test_append_writes_memory_log(make_memory):
    memory = make_memory(StubLLM())
    await memory.append("c1", "user", "  hello  ")
    await memory.append("c1", "user", "   ")
    assert [e["content"] for e in storage.get_memory("c1")] == ["hello"]


async def test_summary_trigger_boundary(make_memory):
    """No summary at exactly the trigger size; one regeneration past it."""
    config = EngineConfig(summary_trigger=120)
    llm = StubLLM({"summarizer": ["Mira plans the heist."]})
    memory = make_memory(llm, config=config)
    for i in range(120):
        await memory.append("c1", "user", f"turn {i}")
    await memory.runner.drain()
    assert "summarizer" not in llm.stages()

    await memory.append("c1", "assistant", "turn 120")
    await memory.runner.drain()
    assert llm.stages().count("summarizer") == 1
    assert memory.get_summary("c1") == "Mira plans the heist."
    stage, system, user_prompt = llm.last_call("summarizer")
    assert "300 words" in system
    assert "assistant: turn 120" in user_prompt


async def test_summary_input_is_capped(make_memory):
    config = EngineConfig(summary_trigger=1, summary_input_chars=50)
    llm = StubLLM(default="memo")
    memory = make_memory(llm, config=config)
    await memory.append("c1", "user", "x" * 200)
    await memory.append("c1", "user", "y" * 200)
    await memory.runner.drain()
    assert all(len(c[2]) <= 50 for c in llm.calls if c[0] == "summarizer")


async def test_summary_failure_does_not_fail_append(make_memory, caplog):
    config = EngineConfig(summary_trigger=0)
    llm = StubLLM({"summarizer": [RuntimeError("down")]})
    memory = make_memory(llm, config=config)
    await memory.append("c1", "user", "hello")
    await memory.runner.drain()
    assert memory.get_summary("c1") is None
    assert storage.get_memory("c1")[0]["content"] == "hello"


async def test_window_failure_falls_back_to_memory_log(caplog):
    window = AsyncMock()
    window.push.side_effect = ConnectionError("redis down")
    window.recent.side_effect = ConnectionError("redis down")
    memory = MemoryStore(StubLLM(), EngineConfig(), window=window, runner=BackgroundRunner())
    await memory.append("c1", "assistant", LONG_DRAFT)
    assert await memory.get_last_assistant_draft("c1") == LONG_DRAFT.strip()
    assert "window mirror failed" in caplog.text


def test_retrieve_relevant_newest_first(make_memory):
    memory = make_memory(StubLLM())
    storage.append_memory("c1", "user", "The lighthouse keeper lies", keep=100)
    storage.append_memory("c1", "assistant", "Nothing here", keep=100)
    storage.append_memory("c1", "user", "Who built the lighthouse?", keep=100)
    found = memory.retrieve_relevant("c1", "lighthouse secrets", limit=5)
    assert [f["content"] for f in found] == ["Who built the lighthouse?", "The lighthouse keeper lies"]


def test_retrieve_relevant_without_terms_returns_newest(make_memory):
    memory = make_memory(StubLLM())
    for i in range(6):
        storage.append_memory("c1", "user", f"m{i}", keep=100)
    found = memory.retrieve_relevant("c1", "ok", limit=1)
    assert [f["content"] for f in found] == ["m5", "m4", "m3"]


async def test_last_assistant_draft_skips_placeholders_and_short(make_memory):
    memory = make_memory(StubLLM())
    await memory.append("c1", "assistant", LONG_DRAFT)
    await memory.append("c1", "assistant", "[chapter draft ready]" + "x" * 600)
    await memory.append("c1", "assistant", "Short reply.")
    await memory.append("c1", "user", "save it")
    assert await memory.get_last_assistant_draft("c1") == LONG_DRAFT.strip()


async def test_last_assistant_draft_none(make_memory):
    memory = make_memory(StubLLM())
    await memory.append("c1", "assistant", "Short reply.")
    assert await memory.get_last_assistant_draft("c1") is None


async def test_last_assistant_draft_truncated(make_memory):
    memory = make_memory(StubLLM(), config=EngineConfig(draft_max_chars=600))
    await memory.append("c1", "assistant", "a" * 2000)
    assert len(await memory.get_last_assistant_draft("c1")) == 600


def test_find_matching_draft(make_memory):
    memory = make_memory(StubLLM())
    storage.append_memory("c1", "assistant", "Chapter 2 draft " + "b" * 400, keep=100)
    storage.append_memory("c1", "assistant", "Chapter 3 draft " + "c" * 400, keep=100)
    storage.append_memory("c1", "assistant", "chapter 2 tiny", keep=100)
    match = memory.find_matching_draft("c1", ["chapter 2"])
    assert match.startswith("Chapter 2 draft")
    assert memory.find_matching_draft("c1", ["chapter 9"]) is None
    assert memory.find_matching_draft("c1", []) is None

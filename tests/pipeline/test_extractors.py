"""Tests for JSON recovery and the structured extraction stages."""

import json

from conftest import StubLLM
from inkverse import storage
from inkverse.llm import LLMError
from inkverse.models import EngineConfig
from inkverse.pipeline.extractors import (
    derive_settings,
    extract_entity_draft,
    extract_references,
    heuristic_settings,
    normalize_settings,
    parse_json_object,
)


class TestParseJsonObject:
    def test_plain(self):
        assert parse_json_object('{"genre": "noir"}') == {"genre": "noir"}

    def test_code_fence(self):
        assert parse_json_object('```json\n{"genre": "noir"}\n```') == {"genre": "noir"}

    def test_embedded_in_prose(self):
        text = 'Sure! Here it is: {"name": "Mira", "traits": {"quote": "a } brace"}} Hope that helps.'
        assert parse_json_object(text) == {"name": "Mira", "traits": {"quote": "a } brace"}}

    def test_array_of_one(self):
        assert parse_json_object('[{"name": "Mira"}]') == {"name": "Mira"}

    def test_garbage(self):
        assert parse_json_object("no json here") is None
        assert parse_json_object('["a", "b"]') is None
        assert parse_json_object("") is None


class TestSettingsNormalization:
    def test_keeps_plot_fields_only(self):
        proposed = {"genre": " noir ", "core_conflict": "guild vs. crown", "worldName": "Verdant", "tone": "dark"}
        assert normalize_settings(proposed) == {"genre": "noir", "coreConflict": "guild vs. crown"}

    def test_empty(self):
        assert normalize_settings({"worldName": "Verdant"}) is None
        assert normalize_settings(None) is None

    def test_heuristic_labels(self):
        text = "Here is the pitch.\n**Genre:** cyberpunk noir\nCore conflict: a thief vs. the glass guild"
        assert heuristic_settings(text) == {"genre": "cyberpunk noir", "coreConflict": "a thief vs. the glass guild"}

    def test_heuristic_set_genre_phrase(self):
        assert heuristic_settings("set genre to cyberpunk noir") == {"genre": "cyberpunk noir"}

    def test_heuristic_versus(self):
        assert heuristic_settings("It is the old city versus the new tide.")["coreConflict"] == "It is the old city vs. the new tide"

    def test_heuristic_nothing(self):
        assert heuristic_settings("Let's talk about pacing.") is None


class TestDeriveSettings:
    async def test_first_attempt(self, make_memory, project):
        chat = storage.create_chat(project["id"], "plot")
        llm = StubLLM({"settings_extractor": ['{"genre": "cyberpunk noir", "worldName": "x"}']})
        result = await derive_settings(llm, make_memory(llm), chat["id"], "set genre to cyberpunk noir", EngineConfig())
        assert result == {"genre": "cyberpunk noir"}

    async def test_strict_retry(self, make_memory, project):
        chat = storage.create_chat(project["id"], "plot")
        llm = StubLLM({"settings_extractor": ["Sure, noir sounds great!", '{"coreConflict": "guild vs. crown"}']})
        result = await derive_settings(llm, make_memory(llm), chat["id"], "save settings", EngineConfig())
        assert result == {"coreConflict": "guild vs. crown"}
        assert "ABSOLUTE REQUIREMENT" in llm.last_call("settings_extractor")[1]

    async def test_heuristic_fallback_uses_last_assistant(self, make_memory, project):
        chat = storage.create_chat(project["id"], "plot")
        storage.append_turn(chat["id"], "assistant", "Proposal:\nGenre: gaslamp fantasy\n" + "Details follow. " * 10)
        llm = StubLLM({"settings_extractor": ["nope", "still nope"]})
        result = await derive_settings(llm, make_memory(llm), chat["id"], "save settings", EngineConfig())
        assert result == {"genre": "gaslamp fantasy"}

    async def test_llm_failure_falls_back(self, make_memory, project):
        chat = storage.create_chat(project["id"], "plot")
        llm = StubLLM({"settings_extractor": [LLMError("down")]})
        result = await derive_settings(llm, make_memory(llm), chat["id"], "save settings", EngineConfig())
        assert result is None


class TestEntityDraft:
    async def test_character(self, project):
        chat = storage.create_chat(project["id"], "character")
        storage.append_turn(chat["id"], "user", "Mira should fear water")
        payload = {"name": "Mira", "role": "thief", "traits": {"fears": ["water"], "age": 31}}
        llm = StubLLM({"character_extractor": [json.dumps(payload)]})
        draft = await extract_entity_draft(llm, "character", chat["id"], "save it", EngineConfig())
        assert draft.name == "Mira"
        assert draft.traits == {"fears": ["water"], "age": "31"}
        stage, system, user_prompt = llm.last_call("character_extractor")
        assert "Character object" in system
        assert "user: Mira should fear water" in user_prompt

    async def test_world_drops_role(self, project):
        chat = storage.create_chat(project["id"], "world")
        llm = StubLLM({"world_extractor": ['{"name": "Glass Docks", "role": "x", "summary": "mirrors"}']})
        draft = await extract_entity_draft(llm, "world", chat["id"], "save it", EngineConfig())
        assert draft.role is None
        assert draft.summary == "mirrors"

    async def test_empty_proposal(self, project):
        chat = storage.create_chat(project["id"], "character")
        llm = StubLLM({"character_extractor": ["{}"]})
        assert await extract_entity_draft(llm, "character", chat["id"], "hi", EngineConfig()) is None

    async def test_failure_is_none(self, project):
        chat = storage.create_chat(project["id"], "character")
        llm = StubLLM({"character_extractor": [LLMError("down")]})
        assert await extract_entity_draft(llm, "character", chat["id"], "hi", EngineConfig()) is None


async def test_extract_references(project):
    chat = storage.create_chat(project["id"], "plot")
    llm = StubLLM({"reference_extractor": ['{"characters": ["Mira", 3, ""], "world": "Glass Docks"}']})
    assert await extract_references(llm, chat["id"], "Mira at the docks", EngineConfig()) == (["Mira"], [])

"""Tests for the Write Mediator: containment, the mode gate and write semantics."""

from inkverse import storage
from inkverse.models import ChapterTarget, EntityDraft
from inkverse.pipeline.mediator import WriteMediator, refusal_message, strip_mode_tag


def _texts(outcome) -> str:
    return "\n".join(e["content"] for e in outcome.events if e.get("type") == "text")


def test_refusal_names_target_chat():
    message = refusal_message("character", "plot")
    assert "This is a Character chat" in message
    assert "Open the Plot chat" in message


def test_strip_mode_tag():
    assert strip_mode_tag("[MODE] commit\n# Chapter 1\nText") == "# Chapter 1\nText"
    assert strip_mode_tag("# Chapter 1") == "# Chapter 1"


class TestContainment:
    def test_character_chat_cannot_write_chapters(self, project):
        mediator = WriteMediator(project["id"], "character", "commit")
        outcome = mediator.author_chapter("text " * 200, None)
        assert "Open the Plot chat" in _texts(outcome)
        assert storage.list_chapters(project["id"]) == []
        assert not outcome.wrote

    def test_plot_chat_cannot_upsert_characters(self, project):
        mediator = WriteMediator(project["id"], "plot", "commit")
        outcome = mediator.upsert_entity("character", EntityDraft(name="Mira"))
        assert "Open the Character chat" in _texts(outcome)
        assert storage.list_entities(project["id"], "character") == []

    def test_world_chat_cannot_propose_settings(self, project):
        outcome = WriteMediator(project["id"], "world", "commit").propose_settings({"genre": "noir"})
        assert "Open the Plot chat" in _texts(outcome)
        assert all("action" not in e for e in outcome.events)


class TestSettings:
    def test_preview(self, project):
        outcome = WriteMediator(project["id"], "plot", "preview").propose_settings({"genre": "cyberpunk noir"})
        assert len(outcome.events) == 1
        assert "- genre: cyberpunk noir" in _texts(outcome)
        assert "Switch to commit mode" in _texts(outcome)
        assert storage.get_project(project["id"])["genre"] is None

    def test_commit_emits_confirm_without_writing(self, project):
        outcome = WriteMediator(project["id"], "plot", "commit").propose_settings({"genre": "cyberpunk noir"})
        assert outcome.events == [{"action": "confirm_settings", "changes": {"genre": "cyberpunk noir"}}]
        assert storage.get_project(project["id"])["genre"] is None


class TestEntities:
    def test_preview_writes_nothing(self, project):
        draft = EntityDraft(name="Mira", role="thief", traits={"fears": ["water"]})
        outcome = WriteMediator(project["id"], "character", "preview").upsert_entity("character", draft)
        assert len(outcome.events) == 1
        assert "(new record)" in _texts(outcome)
        assert storage.list_entities(project["id"], "character") == []

    def test_commit_creates(self, project):
        draft = EntityDraft(name="Mira", role="thief", traits={"fears": ["water"]})
        outcome = WriteMediator(project["id"], "character", "commit").upsert_entity("character", draft)
        event = outcome.events[0]
        assert event["action"] == "upsert_character"
        assert event["created"] is True
        assert event["item"]["id"]
        assert storage.find_entity_by_name(project["id"], "character", "mira")["role"] == "thief"

    def test_commit_updates_case_insensitively_with_deep_merge(self, project):
        storage.create_entity(project["id"], "character", {
            "name": "Mira", "role": "thief", "summary": "quiet",
            "traits": {"looks": {"hair": "black", "eyes": "grey"}},
        })
        draft = EntityDraft(name="MIRA", traits={"looks": {"hair": "silver"}, "fears": ["water"]})
        outcome = WriteMediator(project["id"], "character", "commit").upsert_entity("character", draft)
        assert outcome.events[0]["created"] is False
        entities = storage.list_entities(project["id"], "character")
        assert len(entities) == 1
        assert entities[0]["traits"] == {"looks": {"hair": "silver", "eyes": "grey"}, "fears": ["water"]}
        assert entities[0]["summary"] == "quiet"
        assert entities[0]["role"] == "thief"

    def test_missing_name(self, project):
        outcome = WriteMediator(project["id"], "world", "commit").upsert_entity("world", EntityDraft(summary="foggy"))
        assert "name is missing" in _texts(outcome)
        assert '@"' in _texts(outcome)
        assert storage.list_entities(project["id"], "world") == []

    def test_fallback_name(self, project):
        outcome = WriteMediator(project["id"], "world", "commit").upsert_entity(
            "world", EntityDraft(summary="foggy"), fallback_name="Glass Docks"
        )
        assert outcome.events[0]["item"]["name"] == "Glass Docks"


class TestChapters:
    def test_author_preview_writes_nothing(self, project):
        naming = ChapterTarget(number=3, title="Embers", source="new")
        outcome = WriteMediator(project["id"], "plot", "preview").author_chapter("Smoke. " * 100, naming)
        assert len(outcome.events) == 1
        assert "Embers" in _texts(outcome)
        assert storage.list_chapters(project["id"]) == []

    def test_author_commit_creates_even_when_number_exists(self, project):
        storage.create_chapter(project["id"], "Zeta", "z")
        naming = ChapterTarget(number=1, title=None, source="new")
        outcome = WriteMediator(project["id"], "plot", "commit").author_chapter("[MODE] commit\nSmoke rose.", naming)
        event = outcome.events[0]
        assert event["action"] == "create_chapter"
        assert event["title"] == "Chapter 1"
        assert event["content"] == "Smoke rose."
        assert event["chapter_number"] == 2
        assert len(storage.list_chapters(project["id"])) == 2

    def test_rewrite_preserves_title(self, project):
        zeta = storage.create_chapter(project["id"], "Zeta", "old")
        target = ChapterTarget(chapter=zeta, number=1, title="Zeta", source="position")
        outcome = WriteMediator(project["id"], "plot", "commit").rewrite_chapter("new text", target)
        event = outcome.events[0]
        assert event == {"action": "update_chapter", "content": "new text", "id": zeta["id"], "chapter_number": 1, "title": "Zeta"}
        assert storage.get_chapter(project["id"], zeta["id"])["content"] == "new text"

    def test_rewrite_explicit_title(self, project):
        zeta = storage.create_chapter(project["id"], "Zeta", "old")
        target = ChapterTarget(chapter=zeta, number=1, title="Zeta Reborn", source="message", title_is_explicit=True)
        WriteMediator(project["id"], "plot", "commit").rewrite_chapter("new", target)
        assert storage.get_chapter(project["id"], zeta["id"])["title"] == "Zeta Reborn"

    def test_rewrite_requires_target(self, project):
        outcome = WriteMediator(project["id"], "plot", "commit").rewrite_chapter("x", None)
        assert "@chapter2" in _texts(outcome)

    def test_rewrite_missing_row_is_error(self, project):
        ghost = {"id": "ghost", "title": "Ghost", "content": ""}
        target = ChapterTarget(chapter=ghost, number=1, title="Ghost", source="id")
        outcome = WriteMediator(project["id"], "plot", "commit").rewrite_chapter("x", target)
        assert outcome.events[0]["type"] == "error"
        assert not outcome.wrote

    def test_save_draft_creates_with_title(self, project):
        target = ChapterTarget(number=None, title="The Long Night", source="new")
        outcome = WriteMediator(project["id"], "plot", "commit").save_draft("# The Long Night\nText", target)
        assert outcome.events[0]["action"] == "create_chapter"
        assert storage.list_chapters(project["id"])[0]["title"] == "The Long Night"
        assert outcome.transcript == "[chapter saved]"

    def test_save_draft_preview(self, project):
        alpha = storage.create_chapter(project["id"], "Alpha", "old")
        target = ChapterTarget(chapter=alpha, number=1, title="Alpha", source="position")
        outcome = WriteMediator(project["id"], "plot", "preview").save_draft("new draft", target)
        assert 'update chapter 1 "Alpha"' in _texts(outcome)
        assert storage.get_chapter(project["id"], alpha["id"])["content"] == "old"

    def test_convert_commit_stores_panel_script(self, project):
        alpha = storage.create_chapter(project["id"], "Alpha", "text")
        target = ChapterTarget(chapter=alpha, number=1, title="Alpha", source="position")
        outcome = WriteMediator(project["id"], "plot", "commit").convert_chapter("PANEL 1: docks", target)
        assert outcome.events == [{"action": "convert_to_manhwa", "panel_script": "PANEL 1: docks", "chapter_id": alpha["id"]}]
        assert storage.get_chapter(project["id"], alpha["id"])["panel_script"] == "PANEL 1: docks"

import re
import shutil
from pathlib import Path
from typing import Any

import pytest

from inkverse import storage
from inkverse.memory import MemoryStore
from inkverse.models import EngineConfig
from inkverse.tasks import BackgroundRunner

TEST_DATA_DIR = Path("data-tests")


class StubLLM:
    """Deterministic completion client for tests.

    Provide a dict mapping stage name -> list of responses (in call order).
    A response that is an Exception instance is raised instead of returned.
    "muse" responses are streamed word by word. Stages without queued
    responses return `default`, or raise when no default is set.
    """

    def __init__(self, responses: dict[str, list[Any]] | None = None, default: str | None = None) -> None:
        self._queues: dict[str, list[Any]] = {k: list(v) for k, v in (responses or {}).items()}
        self.default = default
        self.calls: list[tuple[str, str, Any]] = []

    def _next(self, stage: str) -> str:
        queue = self._queues.get(stage)
        if not queue:
            if self.default is not None:
                return self.default
            raise AssertionError(
                f"StubLLM: unexpected call to stage={stage!r} "
                f"(no responses queued). calls so far: {[c[0] for c in self.calls]}"
            )
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def complete(self, stage, system_prompt, user_prompt, temperature=0.0) -> str:
        self.calls.append((stage, system_prompt, user_prompt))
        return self._next(stage)

    async def stream(self, stage, system_prompt, messages, temperature=0.7):
        self.calls.append((stage, system_prompt, messages))
        for chunk in re.findall(r"\S+\s*", self._next(stage)):
            yield chunk

    def stages(self) -> list[str]:
        return [c[0] for c in self.calls]

    def last_call(self, stage: str) -> tuple[str, str, Any]:
        return [c for c in self.calls if c[0] == stage][-1]

    def assert_exhausted(self) -> None:
        """Assert every queued response was consumed."""
        leftover = {k: v for k, v in self._queues.items() if v}
        if leftover:
            raise AssertionError(f"StubLLM: unused responses remain: {leftover}")


@pytest.fixture(autouse=True)
def clean_test_data():
    """Wipe and re-init data-tests/ before every test."""
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    storage.init_storage(TEST_DATA_DIR)
    yield
    # leave data-tests around after tests for inspection; CI can ignore it


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def make_memory(engine_config):
    """Build a MemoryStore (no Redis window) around a given stub."""

    def _make(llm, window=None, config: EngineConfig | None = None) -> MemoryStore:
        return MemoryStore(llm, config or engine_config, window=window, runner=BackgroundRunner())

    return _make


@pytest.fixture
def project() -> dict:
    return storage.create_project("user-1", "Ashes of Verdant", "A city of glass burns")

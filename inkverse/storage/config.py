"""App configuration (LLM connection and engine tunables).

get_config() returns defaults merged with stored values, then applies
environment overrides for the LLM connection. update_config() merges each
section key-by-key and persists.
"""

import copy
import os
from pathlib import Path
from typing import Any

from .core import data_dir, read_json, write_json

_CONFIG_DEFAULTS: dict[str, Any] = {
    "llm": {
        "provider_url": "https://api.groq.com/openai",
        "api_key": "",
        "model": "llama-3.3-70b-versatile",
        "chat_temperature": 0.7,
        "timeout": 120.0,
    },
    "engine": {
        "intent_confidence": 0.6,
        "window_size": 500,
        "memory_size": 2000,
        "summary_trigger": 120,
        "summary_slice": 200,
        "summary_words": 300,
        "summary_input_chars": 12000,
        "draft_min_chars": 500,
        "draft_match_min_chars": 300,
        "draft_max_chars": 20000,
        "history_turns": 20,
        "extraction_turns": 40,
        "relevant_limit": 5,
        "chapter_summary_chars": 600,
        "target_chapter_chars": 8000,
        "reference_limit": 8,
    },
}

# Environment variable -> llm section key
_LLM_ENV = {
    "LLM_PROVIDER_URL": "provider_url",
    "LLM_API_KEY": "api_key",
    "LLM_MODEL": "model",
}


def _config_path() -> Path:
    return data_dir() / "config.json"


def _stored() -> dict[str, Any]:
    return read_json(_config_path(), {})


def get_config() -> dict[str, Any]:
    """Read config, returning defaults merged with stored values and env overrides."""
    config = copy.deepcopy(_CONFIG_DEFAULTS)
    for section, values in _stored().items():
        if section in config and isinstance(values, dict):
            config[section].update(values)
    for env_name, key in _LLM_ENV.items():
        value = os.getenv(env_name)
        if value:
            config["llm"][key] = value
    return config


def update_config(fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into stored config and persist. Returns full config.

    Unknown sections are ignored; known sections merge key-by-key.
    """
    stored = _stored()
    for section, values in fields.items():
        if section in _CONFIG_DEFAULTS and isinstance(values, dict):
            stored.setdefault(section, {}).update(values)
    write_json(_config_path(), stored)
    return get_config()

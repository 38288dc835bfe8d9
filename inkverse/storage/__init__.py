"""File-based JSON storage for projects, story entities and chat sessions.

Data layout:
  data/
    config.json                       LLM connection + engine tunables
    projects/
      <project_id>.json               Project (owner, title, genre, coreConflict, settingsJson)
      <project_id>/
        chapters.json                 Chapters, list order = creation order
        characters.json               Character records (name, role, summary, traits)
        world.json                    World entries (name, summary, traits)
    chats/
      <chat_id>.json                  Chat session (project_id, chat_type, title)
      <chat_id>/
        messages.json                 Durable turn log (UI transcript)
        memory.json                   Memory log (full turn text, trimmed)
        summary.txt                   Rolling summary

Chapter positions are 1-based indexes into chapters.json and are never
stored. Entity lookups by name are case-insensitive and scoped to a project.
There is no locking: concurrent read-modify-write cycles are last-write-wins.
"""

# Re-export all public symbols so `from inkverse import storage` keeps working.

from .core import (  # noqa: F401
    chats_dir,
    data_dir,
    init_storage,
    new_id,
    now_iso,
    projects_dir,
)

from .projects import (  # noqa: F401
    SETTINGS_FIELDS,
    create_project,
    get_project,
    update_project_settings,
)

from .chats import (  # noqa: F401
    CHAT_TYPES,
    create_chat,
    get_chat,
    list_chats,
)

from .messages import (  # noqa: F401
    append_turn,
    get_recent_turns,
    get_turns,
)

from .memory import (  # noqa: F401
    append_memory,
    get_memory,
    get_summary,
    set_summary,
)

from .chapters import (  # noqa: F401
    create_chapter,
    get_chapter,
    list_chapters,
    update_chapter,
)

from .entities import (  # noqa: F401
    ENTITY_FIELDS,
    ENTITY_KINDS,
    create_entity,
    find_entity_by_name,
    list_entities,
    update_entity,
)

from .config import (  # noqa: F401
    get_config,
    update_config,
)

"""Redis-backed fast storage: the RecentWindow cache and the image job queue.

Both are optional. create_app() builds them only when REDIS_URL is set; the
rest of the engine treats a missing window or queue as a degraded mode.

Keys:
  chat:window:<chat_id>    list of JSON {role, content, ts}, trimmed to the newest N
  queue:image-generation   list of JSON jobs {id, name, data, queued_at}
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis

logger = logging.getLogger(__name__)


def connect(url: str) -> redis.Redis:
    """Build an asyncio Redis client; TLS is implied by a rediss:// URL."""
    return redis.from_url(url, decode_responses=True)


def _window_key(chat_id: str) -> str:
    return f"chat:window:{chat_id}"


class RedisWindow:
    """Bounded recent-turn window per chat session."""

    def __init__(self, client: redis.Redis, size: int = 500) -> None:
        self._client = client
        self._size = size

    async def push(self, chat_id: str, role: str, content: str) -> int:
        """Append one turn, trim to the newest `size`, return the resulting length."""
        item = json.dumps({
            "role": role,
            "content": content,
            "ts": datetime.now(timezone.utc).isoformat(),
        })
        key = _window_key(chat_id)
        await self._client.rpush(key, item)
        await self._client.ltrim(key, -self._size, -1)
        return int(await self._client.llen(key))

    async def recent(self, chat_id: str, count: int) -> list[dict[str, Any]]:
        """The newest `count` turns, oldest first. Malformed entries are skipped."""
        raw = await self._client.lrange(_window_key(chat_id), -count, -1)
        items: list[dict[str, Any]] = []
        for entry in raw:
            try:
                item = json.loads(entry)
            except (TypeError, json.JSONDecodeError):
                continue
            if isinstance(item, dict):
                items.append(item)
        return items


class ImageJobQueue:
    """Producer side of the image-generation queue consumed by the image worker."""

    QUEUE_KEY = "queue:image-generation"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    async def enqueue(self, data: dict[str, Any], job_id: str | None = None) -> str:
        job_id = job_id or uuid.uuid4().hex
        job = {
            "id": job_id,
            "name": "generate",
            "data": data,
            "queued_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._client.rpush(self.QUEUE_KEY, json.dumps(job))
        logger.info("image job queued id=%s panel=%s", job_id, data.get("panelId"))
        return job_id

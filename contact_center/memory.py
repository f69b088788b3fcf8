"""
Redis-backed chat memory
========================

Purpose:
- Keep the recent turns of a chatbot session in Redis so follow-up questions
  are answered with context.

Dependencies & Requirements:
- `redis.asyncio` client for async Redis operations
- Environment variable `MEMORY_REDIS_URL` or `REDIS_URL`

Security Considerations:
- Chat content may include customer PII; keep the TTL short and restrict access.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from redis import asyncio as aioredis


class ChatMemory:
    """
    Stores recent chat turns in a Redis list per session.

    Parameters:
    - client: `redis.asyncio.Redis` client created with `decode_responses=True`.
    - ttl_seconds: `int` expiration refreshed on every write.
    - max_turns: `int` turns to keep; each turn is a user and an assistant entry.
    - prefix: `str` key namespace.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        ttl_seconds: int = 60 * 60 * 24,
        max_turns: int = 5,
        prefix: str = "contact-center:chat",
    ) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._max_turns = max_turns
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "ChatMemory":
        return cls(aioredis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}:{session_id}"

    async def append_turn(self, session_id: str, user_message: str, answer: str) -> None:
        """
        Append one user/assistant exchange and trim the list.

        Exceptions:
        - Propagates Redis errors; callers decide whether memory is optional.
        """
        now = datetime.now(timezone.utc).isoformat()
        entries = [
            json.dumps({"role": "user", "content": user_message, "timestamp": now}),
            json.dumps({"role": "assistant", "content": answer, "timestamp": now}),
        ]
        key = self._key(session_id)
        await self._client.rpush(key, *entries)
        await self._client.ltrim(key, -(self._max_turns * 2), -1)
        if self._ttl:
            await self._client.expire(key, self._ttl)

    async def recent(self, session_id: str) -> list[dict[str, Any]]:
        """Return stored entries oldest first; undecodable entries are skipped."""
        raw_entries = await self._client.lrange(self._key(session_id), -(self._max_turns * 2), -1)
        messages: list[dict[str, Any]] = []
        for entry in raw_entries:
            try:
                messages.append(json.loads(entry))
            except json.JSONDecodeError:
                continue
        return messages

    async def clear(self, session_id: str) -> None:
        await self._client.delete(self._key(session_id))

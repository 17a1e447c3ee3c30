from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, List

logger = logging.getLogger("companion_bot")

TRUNCATION_MARKER = "...(truncated)"
ROLE_LABELS = {"user": "User", "assistant": "Bot"}


@dataclass(frozen=True, slots=True)
class Turn:
    role: str
    text: str
    timestamp: float

    def render(self) -> str:
        return f"{ROLE_LABELS.get(self.role, 'Bot')}: {self.text}"


def cap_turn_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


class RecencyBuffer:
    """Per-identifier list of the most recent turns kept in Redis.

    Every write trims the list to the newest ``max_turns`` entries and resets the
    key TTL, so an idle identifier's history expires on its own.
    """

    def __init__(
        self,
        redis: Any,
        *,
        max_turns: int = 20,
        ttl_seconds: int = 3600,
        max_chars: int = 800,
        key_prefix: str = "chat_history",
    ) -> None:
        self.redis = redis
        self.max_turns = max_turns
        self.ttl_seconds = ttl_seconds
        self.max_chars = max_chars
        self.key_prefix = key_prefix

    def _key(self, identifier: str) -> str:
        return f"{self.key_prefix}:{identifier}"

    async def append(self, identifier: str, role: str, text: str) -> Turn:
        if role not in ROLE_LABELS:
            raise ValueError(f"Unsupported turn role: {role}")
        turn = Turn(role=role, text=cap_turn_text(text, self.max_chars), timestamp=time.time())
        payload = json.dumps(
            {"role": turn.role, "content": turn.text, "timestamp": turn.timestamp},
            ensure_ascii=False,
        )
        key = self._key(identifier)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.rpush(key, payload)
            pipe.ltrim(key, -self.max_turns, -1)
            pipe.expire(key, self.ttl_seconds)
            await pipe.execute()
        return turn

    async def read_turns(self, identifier: str) -> List[Turn]:
        raw_items = await self.redis.lrange(self._key(identifier), 0, -1)
        turns: List[Turn] = []
        for raw in raw_items or []:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            try:
                data = json.loads(raw)
            except (TypeError, ValueError):
                logger.warning("[recency.read] skipped malformed entry user=%s", identifier)
                continue
            if not isinstance(data, dict):
                logger.warning("[recency.read] skipped non-object entry user=%s", identifier)
                continue
            role = str(data.get("role") or "user")
            turns.append(
                Turn(
                    role=role if role in ROLE_LABELS else "assistant",
                    text=str(data.get("content") or ""),
                    timestamp=float(data.get("timestamp") or 0.0),
                )
            )
        return turns

    async def read(self, identifier: str) -> str:
        turns = await self.read_turns(identifier)
        return "\n".join(turn.render() for turn in turns)

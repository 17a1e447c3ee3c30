from __future__ import annotations

import asyncio
import datetime as dt
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from ..prompts.chat import build_daily_fact_prompt

logger = logging.getLogger("companion_bot")

NO_TOPICS_YET = "Chưa có chủ đề nào"

_TOPIC_RE = re.compile(r"<topic>([\s\S]*?)</topic>")
_CONTENT_RE = re.compile(r"<content>([\s\S]*?)</content>")


@dataclass(frozen=True, slots=True)
class DailyFact:
    topic: str
    content: str


def parse_daily_fact(raw_text: str) -> DailyFact | None:
    topic = _TOPIC_RE.search(raw_text or "")
    content = _CONTENT_RE.search(raw_text or "")
    if topic is None or content is None:
        return None
    return DailyFact(topic=topic.group(1).strip(), content=content.group(1).strip())


def seconds_until(hour: int, now: dt.datetime) -> float:
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += dt.timedelta(days=1)
    return (target - now).total_seconds()


class FactTopicLog:
    """Newest-first list of recently published topics, kept in Redis."""

    def __init__(self, redis: Any, *, limit: int = 50, key: str = "daily_facts_topics") -> None:
        self.redis = redis
        self.limit = limit
        self.key = key

    async def add(self, topic: str) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lpush(self.key, topic)
            pipe.ltrim(self.key, 0, self.limit - 1)
            await pipe.execute()

    async def render(self) -> str:
        topics = await self.redis.lrange(self.key, 0, -1)
        decoded = [t.decode("utf-8", errors="replace") if isinstance(t, bytes) else str(t) for t in topics or []]
        if not decoded:
            return NO_TOPICS_YET
        return ", ".join(decoded)


class DailyFactService:
    def __init__(
        self,
        llm: Any,
        topics: FactTopicLog,
        *,
        temperature: float = 0.85,
        preferred_language: str = "Vietnamese",
    ) -> None:
        self.llm = llm
        self.topics = topics
        self.temperature = temperature
        self.preferred_language = preferred_language

    async def generate_unique_fact(self) -> DailyFact | None:
        try:
            past_topics = await self.topics.render()
            raw = await self.llm.generate(
                build_daily_fact_prompt(past_topics, self.preferred_language),
                temperature=self.temperature,
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[daily.fact] generation failed")
            return None
        fact = parse_daily_fact(raw)
        if fact is None:
            logger.error("[daily.fact] model reply is missing <topic> or <content>")
        return fact

    async def publish(
        self,
        channel_ids: Iterable[int],
        broadcast: Callable[[int, str], Awaitable[None]],
    ) -> DailyFact | None:
        targets = list(channel_ids)
        if not targets:
            return None
        fact = await self.generate_unique_fact()
        if fact is None:
            return None
        logger.info("[daily.fact] topic=%s channels=%s", fact.topic, len(targets))
        await self.topics.add(fact.topic)
        for channel_id in targets:
            await broadcast(channel_id, fact.content)
        return fact

    async def run_forever(
        self,
        hour: int,
        channel_ids: Iterable[int],
        broadcast: Callable[[int, str], Awaitable[None]],
    ) -> None:
        targets = list(channel_ids)
        while True:
            delay = seconds_until(hour, dt.datetime.now())
            logger.info("[daily.fact] next run in %.0fs", delay)
            await asyncio.sleep(delay)
            try:
                await self.publish(targets, broadcast)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[daily.fact] publish failed")

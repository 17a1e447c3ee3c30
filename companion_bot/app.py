from __future__ import annotations

import asyncio
import contextlib
import logging

from .config import Settings
from .dialogue.context import ContextAssembler
from .dialogue.orchestrator import ConversationOrchestrator
from .discord.client import CompanionDiscordBot
from .memory.compactor import MemoryWriter
from .memory.factory import build_redis_client, build_semantic_store
from .memory.profile_sync import ProfileSynchronizer
from .memory.recency_buffer import RecencyBuffer
from .services.daily_fact import DailyFactService, FactTopicLog
from .services.gemini_client import GeminiClient
from .services.query_optimizer import QueryOptimizer

logger = logging.getLogger("companion_bot")


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)
    logging.getLogger("chromadb").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _gemini(settings: Settings, model: str, temperature: float) -> GeminiClient:
    return GeminiClient(
        api_key=settings.gemini_api_key,
        model=model,
        timeout_seconds=settings.gemini_timeout_seconds,
        temperature=temperature,
        max_output_tokens=settings.gemini_max_output_tokens,
        base_url=settings.gemini_base_url,
        embedding_model=settings.gemini_embedding_model,
    )


async def build_bot(settings: Settings) -> CompanionDiscordBot:
    chat_llm = _gemini(settings, settings.gemini_model, settings.gemini_temperature)
    summary_llm = _gemini(settings, settings.gemini_summary_model, settings.gemini_temperature)
    daily_llm = _gemini(settings, settings.gemini_daily_model, settings.gemini_daily_temperature)

    redis = build_redis_client(settings)
    store = await build_semantic_store(settings, summary_llm)

    recency = RecencyBuffer(
        redis,
        max_turns=settings.recency_max_turns,
        ttl_seconds=settings.recency_ttl_seconds,
        max_chars=settings.recency_max_chars,
    )
    assembler = ContextAssembler(
        store=store,
        recency=recency,
        profiles=ProfileSynchronizer(store),
        optimizer=QueryOptimizer(summary_llm),
        default_persona=settings.default_persona_text,
        server_top_k=settings.server_knowledge_top_k,
        history_top_k=settings.history_top_k,
    )
    writer = MemoryWriter(
        store,
        summary_llm,
        threshold=settings.memory_compaction_threshold,
        scan_limit=settings.memory_compaction_scan_limit,
        preferred_language=settings.preferred_response_language,
    )
    orchestrator = ConversationOrchestrator(
        assembler=assembler,
        recency=recency,
        writer=writer,
        store=store,
        llm=chat_llm,
        preferred_language=settings.preferred_response_language,
        creator_name=settings.bot_creator_name,
        bot_name=settings.bot_display_name,
    )
    daily_facts = DailyFactService(
        daily_llm,
        FactTopicLog(redis, limit=settings.daily_fact_topic_limit),
        temperature=settings.gemini_daily_temperature,
        preferred_language=settings.preferred_response_language,
    )
    return CompanionDiscordBot(
        settings=settings,
        orchestrator=orchestrator,
        writer=writer,
        daily_facts=daily_facts,
        llm_clients=[chat_llm, summary_llm, daily_llm],
        redis=redis,
        store=store,
    )


async def _run_bot(settings: Settings) -> None:
    bot = await build_bot(settings)
    try:
        async with bot:
            await bot.start(settings.discord_token)
    finally:
        if not bot.is_closed():
            with contextlib.suppress(Exception):
                await asyncio.wait_for(bot.close(), timeout=10.0)


def main() -> None:
    configure_logging()
    settings = Settings.from_env()
    settings.validate()
    try:
        asyncio.run(_run_bot(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")


if __name__ == "__main__":
    main()

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from ..memory.semantic_store import PERSONA, SERVER_KNOWLEDGE, SemanticDocument
from ..prompts.chat import (
    build_analyze_persona_prompt,
    build_clean_and_summarize_prompt,
    build_forum_comment_prompt,
    build_main_chat_prompt,
    forum_comment_fallback,
)
from .context import PERSONA_TYPE, ContextAssembler
from .protocol import parse

logger = logging.getLogger("companion_bot")

SERVER_KNOWLEDGE_TYPE = "server_knowledge_base"
SERVER_KNOWLEDGE_UPDATED = "✅ Database Updated!"


@dataclass(frozen=True, slots=True)
class ChatReply:
    reply: str
    reaction: str


def persona_doc_id(identifier: str) -> str:
    return f"persona:{identifier}"


def server_knowledge_doc_id(scope_id: str) -> str:
    return f"server_knowledge:{scope_id}"


class ConversationOrchestrator:
    def __init__(
        self,
        *,
        assembler: ContextAssembler,
        recency: Any,
        writer: Any,
        store: Any,
        llm: Any,
        preferred_language: str = "Vietnamese",
        creator_name: str = "It's Russell",
        bot_name: str = "AnhPan",
    ) -> None:
        self.assembler = assembler
        self.recency = recency
        self.writer = writer
        self.store = store
        self.llm = llm
        self.preferred_language = preferred_language
        self.creator_name = creator_name
        self.bot_name = bot_name
        self._background: set[asyncio.Task[None]] = set()

    async def converse(self, identifier: str, observed_profile: str, message: str) -> ChatReply:
        request = await self.assembler.assemble(identifier, observed_profile, message)
        prompt = build_main_chat_prompt(
            profile=request.profile,
            persona=request.persona,
            server_context=request.server_context,
            short_term=request.short_term,
            long_term=request.long_term,
            message=request.message,
            preferred_language=self.preferred_language,
            creator_name=self.creator_name,
        )
        raw = await self.llm.generate(prompt)
        parsed = parse(raw)
        logger.info(
            "[chat.reply] user=%s chars=%s reaction=%s persist=%s",
            identifier,
            len(parsed.reply),
            bool(parsed.reaction),
            parsed.should_persist,
        )
        self._spawn(self._persist_exchange(identifier, message, parsed.reply, parsed.memory_summary), identifier)
        return ChatReply(reply=parsed.reply, reaction=parsed.reaction)

    def _spawn(self, coro: Any, identifier: str) -> None:
        task = asyncio.create_task(coro, name=f"persist-exchange:{identifier}")
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background persistence failed (%s): %s", task.get_name(), exc)

    async def _persist_exchange(self, identifier: str, message: str, reply: str, memory_summary: str) -> None:
        for role, text in (("user", message), ("assistant", reply)):
            try:
                await self.recency.append(identifier, role, text)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[recency.append] user=%s role=%s failed", identifier, role)
        try:
            await self.writer.record(identifier, memory_summary)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[memory.record] user=%s failed", identifier)

    async def drain(self) -> None:
        """Wait for every in-flight persistence task, then for queued compaction checks."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        join = getattr(self.writer, "join", None)
        if callable(join):
            await join()

    async def get_persona(self, identifier: str) -> str | None:
        return await self.assembler.lookup_persona(identifier)

    async def set_persona(self, identifier: str, display_name: str, raw_input: str) -> str:
        persona = str(
            await self.llm.generate(build_analyze_persona_prompt(display_name, raw_input, self.preferred_language))
        ).strip()
        if not persona:
            raise RuntimeError(f"Persona analysis returned nothing for user={identifier}")
        await self.store.upsert(
            PERSONA,
            persona_doc_id(identifier),
            SemanticDocument(
                content=persona,
                metadata={"user_id": identifier, "type": PERSONA_TYPE, "updated_at": int(time.time())},
            ),
        )
        logger.info("[persona.set] user=%s chars=%s", identifier, len(persona))
        return persona

    async def clean_and_summarize(self, raw_text: str) -> str:
        cleaned = await self.llm.generate(build_clean_and_summarize_prompt(raw_text, self.preferred_language))
        return str(cleaned).strip()

    async def refresh_server_knowledge(self, scope_id: str, raw_text: str) -> str:
        summary = await self.clean_and_summarize(raw_text)
        if not summary:
            raise RuntimeError(f"Server knowledge summary is empty for scope={scope_id}")
        await self.store.upsert(
            SERVER_KNOWLEDGE,
            server_knowledge_doc_id(scope_id),
            SemanticDocument(
                content=summary,
                metadata={"scope_id": scope_id, "type": SERVER_KNOWLEDGE_TYPE, "updated_at": int(time.time())},
            ),
        )
        logger.info("[server.knowledge] scope=%s raw_chars=%s chars=%s", scope_id, len(raw_text), len(summary))
        return SERVER_KNOWLEDGE_UPDATED

    async def generate_forum_comment(self, title: str, content: str, persona: str, tone: str) -> str:
        prompt = build_forum_comment_prompt(title, content, persona, tone, bot_name=self.bot_name)
        try:
            comment = str(await self.llm.generate(prompt)).strip()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[forum.comment] generation failed: %s", exc)
            return forum_comment_fallback()
        return comment or forum_comment_fallback()

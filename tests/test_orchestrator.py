from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from companion_bot.dialogue.context import ContextAssembler  # noqa: E402
from companion_bot.dialogue.orchestrator import SERVER_KNOWLEDGE_UPDATED, ConversationOrchestrator  # noqa: E402
from companion_bot.memory.compactor import MemoryWriter  # noqa: E402
from companion_bot.memory.profile_sync import ProfileSynchronizer  # noqa: E402
from companion_bot.memory.recency_buffer import RecencyBuffer  # noqa: E402
from companion_bot.memory.semantic_store import (  # noqa: E402
    HISTORY,
    PERSONA,
    PROFILE,
    SERVER_KNOWLEDGE,
    SemanticDocument,
)
from companion_bot.prompts.chat import RESPONSE_TAG_BLOCK  # noqa: E402
from companion_bot.services.query_optimizer import QueryOptimizer  # noqa: E402
from fakes import FakeLLM, FakeRedis, FakeSemanticStore  # noqa: E402

DEFAULT_PERSONA = "Mặc định (Thân thiện)"


class _Harness:
    def __init__(self, chat_reply: object = "", summary_reply: object = "keywords") -> None:
        self.store = FakeSemanticStore()
        self.redis = FakeRedis()
        self.chat_llm = FakeLLM(chat_reply)  # type: ignore[arg-type]
        self.summary_llm = FakeLLM(summary_reply)  # type: ignore[arg-type]
        self.recency = RecencyBuffer(self.redis)
        self.profiles = ProfileSynchronizer(self.store)
        self.optimizer = QueryOptimizer(self.summary_llm)
        self.assembler = ContextAssembler(
            store=self.store,
            recency=self.recency,
            profiles=self.profiles,
            optimizer=self.optimizer,
            default_persona=DEFAULT_PERSONA,
        )
        self.writer = MemoryWriter(self.store, self.summary_llm, threshold=50)
        self.orchestrator = ConversationOrchestrator(
            assembler=self.assembler,
            recency=self.recency,
            writer=self.writer,
            store=self.store,
            llm=self.chat_llm,
        )

    async def converse_and_drain(self, identifier: str, profile: str, message: str):
        response = await self.orchestrator.converse(identifier, profile, message)
        await self.orchestrator.drain()
        await self.writer.close()
        return response


def test_new_user_exchange_persists_buffer_and_memory() -> None:
    harness = _Harness("<reply>Chào Lan!</reply><react>👋</react><memory>User's name is Lan</memory>")

    response = asyncio.run(harness.converse_and_drain("u1", "Username: lan", "Hi, I'm Lan"))

    assert response.reply == "Chào Lan!"
    assert response.reaction == "👋"
    turns = asyncio.run(harness.recency.read_turns("u1"))
    assert [(turn.role, turn.text) for turn in turns] == [("user", "Hi, I'm Lan"), ("assistant", "Chào Lan!")]
    (record,) = harness.store.docs(HISTORY)
    assert record.content == "User's name is Lan"
    assert record.metadata["user_id"] == "u1"


def test_ignore_directive_updates_buffer_but_not_long_term_memory() -> None:
    harness = _Harness("<reply>Không nha.</reply><react></react><memory>IGNORE</memory>")

    response = asyncio.run(harness.converse_and_drain("u1", "Username: lan", "toxic stuff"))

    assert response.reply == "Không nha."
    assert response.reaction == ""
    assert harness.store.docs(HISTORY) == []
    assert len(asyncio.run(harness.recency.read_turns("u1"))) == 2


def test_prompt_contains_every_context_tier_and_tag_block() -> None:
    harness = _Harness("<reply>ok</reply>", summary_reply="spam rules")

    async def scenario() -> None:
        await harness.store.add(SERVER_KNOWLEDGE, SemanticDocument("No spam rules apply", {"scope_id": "g1"}))
        await harness.store.add(HISTORY, SemanticDocument("Lan likes cats", {"user_id": "u1"}))
        await harness.store.add(HISTORY, SemanticDocument("Other user likes dogs", {"user_id": "u2"}))
        await harness.recency.append("u1", "user", "earlier question")
        await harness.converse_and_drain("u1", "Username: lan", "cats and spam?")

    asyncio.run(scenario())

    prompt = harness.chat_llm.prompts[0]
    assert "User: Username: lan" in prompt
    assert f"Persona: {DEFAULT_PERSONA}" in prompt
    assert "Server: No spam rules apply" in prompt
    assert "Short-term: User: earlier question" in prompt
    assert "Long-term: Lan likes cats" in prompt
    assert "Other user likes dogs" not in prompt
    assert "[Req]: cats and spam?" in prompt
    assert prompt.endswith(RESPONSE_TAG_BLOCK)


def test_server_search_uses_optimized_query_and_history_uses_raw_message() -> None:
    harness = _Harness("<reply>ok</reply>", summary_reply="luật server")

    asyncio.run(harness.converse_and_drain("u1", "p", "Server có luật gì?"))

    searches = {collection: (query, k, flt) for collection, query, k, flt in harness.store.searches}
    assert searches[SERVER_KNOWLEDGE] == ("luật server", 3, None)
    assert searches[HISTORY] == ("Server có luật gì?", 5, {"user_id": "u1"})


def test_stored_persona_overrides_default() -> None:
    harness = _Harness("<reply>Dạ đại ca</reply>")

    async def scenario() -> None:
        harness.chat_llm.reply = "Bot gọi User: Đại Ca"
        await harness.orchestrator.set_persona("u1", "lan", "gọi tao là đại ca")
        harness.chat_llm.reply = "<reply>Dạ đại ca</reply>"
        await harness.converse_and_drain("u1", "p", "hello")

    asyncio.run(scenario())

    assert "Persona: Bot gọi User: Đại Ca\n" in harness.chat_llm.prompts[-1]
    assert DEFAULT_PERSONA not in harness.chat_llm.prompts[-1]


def test_set_persona_replaces_single_record_and_get_persona_reads_it() -> None:
    harness = _Harness()
    harness.chat_llm.reply = "Giới tính: Nam. Bot gọi User: Đại Ca."

    async def scenario() -> tuple[str | None, str | None]:
        before = await harness.orchestrator.get_persona("u1")
        await harness.orchestrator.set_persona("u1", "lan", "first")
        harness.chat_llm.reply = "Tone: Cục súc."
        await harness.orchestrator.set_persona("u1", "lan", "second")
        return before, await harness.orchestrator.get_persona("u1")

    before, after = asyncio.run(scenario())

    assert before is None
    assert after == "Tone: Cục súc."
    assert len(harness.store.docs(PERSONA)) == 1
    assert 'Extract persona for "lan" from: "second"' in harness.chat_llm.prompts[-1]


def test_assembler_falls_back_when_optional_collaborators_fail(caplog: pytest.LogCaptureFixture) -> None:
    harness = _Harness("<reply>still here</reply>", summary_reply=RuntimeError("summary model down"))
    harness.store.fail_on.add("fetch")

    async def scenario() -> str:
        response = await harness.orchestrator.converse("u1", "Username: lan", "hello")
        await harness.orchestrator.drain()
        await harness.writer.close()
        return response.reply

    with caplog.at_level(logging.WARNING, logger="companion_bot"):
        reply = asyncio.run(scenario())

    assert reply == "still here"
    prompt = harness.chat_llm.prompts[0]
    assert "User: Username: lan" in prompt
    assert f"Persona: {DEFAULT_PERSONA}" in prompt
    assert (SERVER_KNOWLEDGE, "hello", 3, None) in harness.store.searches
    assert "[profile.sync]" in caplog.text
    assert "[persona.lookup]" in caplog.text


def test_generation_failure_propagates_and_persists_nothing() -> None:
    harness = _Harness(RuntimeError("Gemini error 500"))

    with pytest.raises(RuntimeError):
        asyncio.run(harness.orchestrator.converse("u1", "p", "hello"))

    assert harness.store.docs(HISTORY) == []
    assert harness.redis.lists == {}


def test_buffer_write_failure_does_not_block_memory_record(caplog: pytest.LogCaptureFixture) -> None:
    harness = _Harness("<reply>ok</reply><memory>User likes tea</memory>")
    harness.redis.fail_writes = True

    with caplog.at_level(logging.ERROR, logger="companion_bot"):
        response = asyncio.run(harness.converse_and_drain("u1", "p", "I like tea"))

    assert response.reply == "ok"
    assert [doc.content for doc in harness.store.docs(HISTORY)] == ["User likes tea"]
    assert "[recency.append] user=u1 role=user failed" in caplog.text


def test_refresh_server_knowledge_keeps_one_document_per_scope() -> None:
    harness = _Harness()

    async def scenario() -> str:
        harness.chat_llm.reply = "Rule 1: no spam"
        await harness.orchestrator.refresh_server_knowledge("g1", "raw dump one")
        harness.chat_llm.reply = "Rule 1: no spam. Rule 2: be kind"
        return await harness.orchestrator.refresh_server_knowledge("g1", "raw dump two")

    confirmation = asyncio.run(scenario())

    assert confirmation == SERVER_KNOWLEDGE_UPDATED
    (doc,) = harness.store.docs(SERVER_KNOWLEDGE)
    assert doc.content == "Rule 1: no spam. Rule 2: be kind"
    assert doc.metadata == {"scope_id": "g1", "type": "server_knowledge_base", "updated_at": doc.metadata["updated_at"]}
    assert "DATA: raw dump two" in harness.chat_llm.prompts[-1]


def test_forum_comment_uses_tone_and_falls_back_on_failure() -> None:
    harness = _Harness("Nghe hay đó bro")

    comment = asyncio.run(harness.orchestrator.generate_forum_comment("Title", "Body", "chill", "roast"))

    assert comment == "Nghe hay đó bro"
    assert "roast" in harness.chat_llm.prompts[0]

    harness.chat_llm.reply = RuntimeError("down")
    fallback = asyncio.run(harness.orchestrator.generate_forum_comment("Title", "Body", "chill", "deep"))
    assert fallback == "Chủ đề này làm tui lú quá bro... 🤐"


def test_fifty_first_exchange_triggers_compaction() -> None:
    harness = _Harness("<reply>noted</reply><memory>User moved to Hue</memory>", summary_reply="condensed profile")

    async def scenario() -> None:
        for index in range(49):
            await harness.store.add(
                HISTORY,
                SemanticDocument(f"fact {index}", {"user_id": "u1", "created_at": float(index), "is_summary": False}),
            )
        await harness.writer.start()
        await harness.converse_and_drain("u1", "p", "I moved to Hue")

    asyncio.run(scenario())

    (doc,) = harness.store.docs(HISTORY)
    assert doc.metadata["is_summary"] is True
    assert doc.content.endswith("condensed profile")


def test_first_exchange_stores_observed_profile() -> None:
    harness = _Harness("<reply>Hi Alice</reply><memory>IGNORE</memory>")

    asyncio.run(harness.converse_and_drain("u1", "Name: Alice", "hi"))

    (profile,) = harness.store.docs(PROFILE)
    assert "Name: Alice" in profile.content
    assert profile.metadata["user_id"] == "u1"


def test_repeated_exchanges_keep_a_single_profile_record() -> None:
    harness = _Harness("<reply>ok</reply><memory>IGNORE</memory>")

    async def scenario() -> None:
        await harness.orchestrator.converse("u1", "Name: Alice", "hi")
        await harness.orchestrator.converse("u1", "Name: Alice", "again")
        await harness.orchestrator.converse("u1", "Name: Alice\nRoles: Mod", "promoted")
        await harness.orchestrator.drain()
        await harness.writer.close()

    asyncio.run(scenario())

    (profile,) = harness.store.docs(PROFILE)
    assert profile.content == "Name: Alice\nRoles: Mod"
    assert [mutation for mutation in harness.store.mutations if mutation[1] == PROFILE] == [
        ("upsert", PROFILE),
        ("upsert", PROFILE),
    ]

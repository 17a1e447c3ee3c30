from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from companion_bot.memory.compactor import SUMMARY_PREFIX, MemoryWriter  # noqa: E402
from companion_bot.memory.semantic_store import HISTORY, SemanticDocument  # noqa: E402
from fakes import FakeLLM, FakeSemanticStore  # noqa: E402


def _seed(store: FakeSemanticStore, identifier: str, count: int) -> None:
    async def scenario() -> None:
        for index in range(count):
            await store.add(
                HISTORY,
                SemanticDocument(
                    content=f"fact {index}",
                    metadata={"user_id": identifier, "created_at": float(index), "is_summary": False},
                ),
            )

    asyncio.run(scenario())


def test_sentinel_summary_writes_nothing() -> None:
    store = FakeSemanticStore()
    writer = MemoryWriter(store, FakeLLM("summary"))

    async def scenario() -> list[bool]:
        results = [await writer.record("u1", "IGNORE"), await writer.record("u1", "  ")]
        await writer.close()
        return results

    assert asyncio.run(scenario()) == [False, False]
    assert store.docs(HISTORY) == []
    assert store.mutations == []


def test_forty_nine_records_are_left_alone() -> None:
    store = FakeSemanticStore()
    _seed(store, "u1", 49)
    llm = FakeLLM("condensed")

    compacted = asyncio.run(MemoryWriter(store, llm, threshold=50).compact_if_needed("u1"))

    assert compacted is False
    assert len(store.docs(HISTORY)) == 49
    assert llm.prompts == []


def test_fifty_records_collapse_into_one_summary() -> None:
    store = FakeSemanticStore()
    _seed(store, "u1", 50)
    _seed(store, "u2", 3)
    llm = FakeLLM("Lan is a nurse who likes cats")

    compacted = asyncio.run(MemoryWriter(store, llm, threshold=50).compact_if_needed("u1"))

    assert compacted is True
    mine = [doc for doc in store.docs(HISTORY) if doc.metadata["user_id"] == "u1"]
    assert len(mine) == 1
    assert mine[0].content == f"{SUMMARY_PREFIX}Lan is a nurse who likes cats"
    assert mine[0].metadata["is_summary"] is True
    assert len([doc for doc in store.docs(HISTORY) if doc.metadata["user_id"] == "u2"]) == 3
    assert "fact 0\nfact 1\n" in llm.prompts[0]


def test_compaction_failure_is_logged_and_records_survive(caplog: pytest.LogCaptureFixture) -> None:
    store = FakeSemanticStore()
    _seed(store, "u1", 50)
    writer = MemoryWriter(store, FakeLLM(RuntimeError("model down")), threshold=50)

    with caplog.at_level(logging.ERROR, logger="companion_bot"):
        compacted = asyncio.run(writer.compact_if_needed("u1"))

    assert compacted is False
    assert len(store.docs(HISTORY)) == 50
    assert "[memory.compact] failed for user=u1" in caplog.text


def test_empty_summary_keeps_records() -> None:
    store = FakeSemanticStore()
    _seed(store, "u1", 50)

    compacted = asyncio.run(MemoryWriter(store, FakeLLM("   "), threshold=50).compact_if_needed("u1"))

    assert compacted is False
    assert len(store.docs(HISTORY)) == 50


def test_record_triggers_background_compaction_at_threshold() -> None:
    store = FakeSemanticStore()
    _seed(store, "u1", 49)
    writer = MemoryWriter(store, FakeLLM("all facts"), threshold=50)

    async def scenario() -> bool:
        await writer.start()
        recorded = await writer.record("u1", "User moved to Hue")
        await writer.join()
        await writer.close()
        return recorded

    assert asyncio.run(scenario()) is True
    docs = store.docs(HISTORY)
    assert len(docs) == 1
    assert docs[0].metadata["is_summary"] is True


def test_record_stores_metadata_for_identifier() -> None:
    store = FakeSemanticStore()
    writer = MemoryWriter(store, FakeLLM("unused"), threshold=50)

    async def scenario() -> None:
        await writer.record("u1", " User's name is Lan ")
        await writer.join()
        await writer.close()

    asyncio.run(scenario())

    (doc,) = store.docs(HISTORY)
    assert doc.content == "User's name is Lan"
    assert doc.metadata["user_id"] == "u1"
    assert doc.metadata["is_summary"] is False


class _SlowFetchStore(FakeSemanticStore):
    async def fetch(self, collection, metadata_filter, limit=None):
        found = await super().fetch(collection, metadata_filter, limit)
        await asyncio.sleep(0.05)
        return found


def test_record_arriving_during_a_running_check_gets_its_own_check() -> None:
    store = _SlowFetchStore()
    _seed(store, "u1", 48)
    writer = MemoryWriter(store, FakeLLM("all facts"), threshold=50)

    async def scenario() -> None:
        await writer.start()
        await writer.record("u1", "fact 49")
        await asyncio.sleep(0.01)
        await writer.record("u1", "fact 50")
        await writer.join()
        await writer.close()

    asyncio.run(scenario())

    docs = store.docs(HISTORY)
    assert len(docs) == 1
    assert docs[0].content == f"{SUMMARY_PREFIX}all facts"

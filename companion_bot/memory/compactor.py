from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any

from ..dialogue.protocol import is_persistable_memory
from ..prompts.chat import build_summarize_history_prompt
from .semantic_store import HISTORY, SemanticDocument

logger = logging.getLogger("companion_bot")

SUMMARY_PREFIX = "[SUMMARY OF PAST CONVERSATIONS]: "


class MemoryWriter:
    """Appends long-term memory records and condenses them once they pile up.

    Compaction checks run on a background worker so they never delay a reply.
    Two overlapping checks for the same identifier can still interleave between
    the read and the delete; the later summary wins and records added in that
    window are lost.
    """

    def __init__(
        self,
        store: Any,
        llm: Any,
        *,
        threshold: int = 50,
        scan_limit: int = 100,
        preferred_language: str = "Vietnamese",
        queue_size: int = 200,
    ) -> None:
        self.store = store
        self.llm = llm
        self.threshold = threshold
        self.scan_limit = scan_limit
        self.preferred_language = preferred_language
        self.compaction_queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self.pending_keys: set[str] = set()
        self.worker_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self.worker_task is None or self.worker_task.done():
            self.worker_task = asyncio.create_task(self._compaction_worker(), name="memory-compaction-worker")

    async def close(self) -> None:
        task = self.worker_task
        self.worker_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def join(self) -> None:
        await self.compaction_queue.join()

    async def record(self, identifier: str, memory_summary: str) -> bool:
        if not is_persistable_memory(memory_summary):
            logger.info("[memory.record] user=%s skipped (no durable fact)", identifier)
            return False

        document = SemanticDocument(
            content=memory_summary.strip(),
            metadata={"user_id": identifier, "created_at": time.time(), "is_summary": False},
        )
        await self.store.add(HISTORY, document)
        logger.info("[memory.record] user=%s chars=%s", identifier, len(document.content))
        await self._enqueue_compaction(identifier)
        return True

    async def _enqueue_compaction(self, identifier: str) -> None:
        if identifier in self.pending_keys:
            return
        if self.worker_task is None:
            await self.start()
        self.pending_keys.add(identifier)

        if self.compaction_queue.full():
            try:
                dropped = self.compaction_queue.get_nowait()
                self.pending_keys.discard(dropped)
                self.compaction_queue.task_done()
                logger.warning("[memory.compact] queue full, dropped check for user=%s", dropped)
            except asyncio.QueueEmpty:
                pass
        self.compaction_queue.put_nowait(identifier)

    async def _compaction_worker(self) -> None:
        while True:
            identifier = await self.compaction_queue.get()
            # Records written while this check runs must be able to queue their own check.
            self.pending_keys.discard(identifier)
            try:
                await self.compact_if_needed(identifier)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Compaction worker error for user=%s", identifier)
            finally:
                self.compaction_queue.task_done()

    async def compact_if_needed(self, identifier: str) -> bool:
        try:
            return await self._compact(identifier)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[memory.compact] failed for user=%s", identifier)
            return False

    async def _compact(self, identifier: str) -> bool:
        records = await self.store.fetch(HISTORY, {"user_id": identifier}, limit=self.scan_limit)
        if len(records) < self.threshold:
            return False

        records.sort(key=lambda doc: float(doc.metadata.get("created_at") or 0.0))
        full_history = "\n".join(doc.content for doc in records)
        summary = str(
            await self.llm.generate(build_summarize_history_prompt(full_history, self.preferred_language))
        ).strip()
        if not summary:
            logger.warning("[memory.compact] user=%s empty summary, keeping %s records", identifier, len(records))
            return False

        await self.store.delete_where(HISTORY, {"user_id": identifier})
        await self.store.add(
            HISTORY,
            SemanticDocument(
                content=f"{SUMMARY_PREFIX}{summary}",
                metadata={"user_id": identifier, "created_at": time.time(), "is_summary": True},
            ),
        )
        logger.info("[memory.compact] user=%s condensed %s records", identifier, len(records))
        return True

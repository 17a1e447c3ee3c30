from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..prompts.chat import build_optimize_query_prompt

logger = logging.getLogger("companion_bot")


class QueryOptimizer:
    """Reduces a chat message to retrieval keywords; degrades to pass-through."""

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    async def optimize(self, free_text: str) -> str:
        try:
            keywords = await self.llm.generate(build_optimize_query_prompt(free_text))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[query.optimize] fallback to raw query: %s", exc)
            return free_text
        cleaned = str(keywords or "").strip()
        return cleaned or free_text

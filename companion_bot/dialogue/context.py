from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ..memory.semantic_store import HISTORY, PERSONA, SERVER_KNOWLEDGE

logger = logging.getLogger("companion_bot")

SERVER_QUERY_FALLBACK = "info"
PERSONA_TYPE = "user_persona"


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    identifier: str
    message: str
    profile: str
    persona: str
    short_term: str
    server_context: str
    long_term: str
    optimized_query: str


class ContextAssembler:
    """Gathers every context tier for one message.

    Profile sync, query optimization and persona lookup degrade to safe
    defaults. Buffer and search failures propagate to the caller.
    """

    def __init__(
        self,
        *,
        store: Any,
        recency: Any,
        profiles: Any,
        optimizer: Any,
        default_persona: str,
        server_top_k: int = 3,
        history_top_k: int = 5,
    ) -> None:
        self.store = store
        self.recency = recency
        self.profiles = profiles
        self.optimizer = optimizer
        self.default_persona = default_persona
        self.server_top_k = server_top_k
        self.history_top_k = history_top_k

    async def assemble(self, identifier: str, observed_profile: str, message: str) -> GenerationRequest:
        profile, persona, short_term, long_term, (optimized, server_context) = await asyncio.gather(
            self._profile(identifier, observed_profile),
            self._persona(identifier),
            self.recency.read(identifier),
            self._long_term(identifier, message),
            self._server_context(message),
        )
        return GenerationRequest(
            identifier=identifier,
            message=message,
            profile=profile,
            persona=persona,
            short_term=short_term,
            server_context=server_context,
            long_term=long_term,
            optimized_query=optimized,
        )

    async def _profile(self, identifier: str, observed_profile: str) -> str:
        try:
            return await self.profiles.reconcile(identifier, observed_profile)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[profile.sync] user=%s failed, using observed profile: %s", identifier, exc)
            return observed_profile

    async def lookup_persona(self, identifier: str) -> str | None:
        found = await self.store.fetch(PERSONA, {"user_id": identifier, "type": PERSONA_TYPE}, limit=1)
        if not found:
            return None
        return found[0].content or None

    async def _persona(self, identifier: str) -> str:
        try:
            persona = await self.lookup_persona(identifier)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[persona.lookup] user=%s failed, using default persona: %s", identifier, exc)
            return self.default_persona
        return persona or self.default_persona

    async def _server_context(self, message: str) -> tuple[str, str]:
        optimized = await self.optimizer.optimize(message)
        docs = await self.store.search(SERVER_KNOWLEDGE, optimized or SERVER_QUERY_FALLBACK, self.server_top_k)
        return optimized, "\n---\n".join(doc.content for doc in docs)

    async def _long_term(self, identifier: str, message: str) -> str:
        docs = await self.store.search(HISTORY, message, self.history_top_k, {"user_id": identifier})
        return "\n".join(doc.content for doc in docs)

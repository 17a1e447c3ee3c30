from __future__ import annotations

import logging
import time
from typing import Any

from .semantic_store import PROFILE, SemanticDocument

logger = logging.getLogger("companion_bot")

PROFILE_TYPE = "user_profile"


def profile_doc_id(identifier: str) -> str:
    return f"profile:{identifier}"


class ProfileSynchronizer:
    def __init__(self, store: Any) -> None:
        self.store = store

    async def reconcile(self, identifier: str, observed_profile: str) -> str:
        """Keep exactly one stored profile per identifier, matching what the caller observed."""
        existing = await self.store.fetch(PROFILE, {"user_id": identifier}, limit=1)
        if existing and existing[0].content == observed_profile:
            return existing[0].content

        document = SemanticDocument(
            content=observed_profile,
            metadata={"user_id": identifier, "type": PROFILE_TYPE, "updated_at": int(time.time())},
        )
        await self.store.upsert(PROFILE, profile_doc_id(identifier), document)
        logger.info(
            "[profile.sync] user=%s action=%s chars=%s",
            identifier,
            "replace" if existing else "insert",
            len(observed_profile),
        )
        return observed_profile

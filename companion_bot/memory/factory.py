from __future__ import annotations

from typing import Any

from redis import asyncio as aioredis

from ..config import Settings
from .semantic_store import HISTORY, PERSONA, PROFILE, SERVER_KNOWLEDGE, ChromaSemanticStore, Embedder


def build_redis_client(settings: Settings) -> Any:
    return aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password or None,
        db=settings.redis_db,
        decode_responses=True,
        socket_timeout=10,
        socket_connect_timeout=10,
    )


def collection_names(settings: Settings) -> dict[str, str]:
    return {
        PROFILE: settings.chroma_profile_collection,
        PERSONA: settings.chroma_persona_collection,
        SERVER_KNOWLEDGE: settings.chroma_server_collection,
        HISTORY: settings.chroma_history_collection,
    }


async def build_semantic_store(settings: Settings, embedder: Embedder) -> ChromaSemanticStore:
    return await ChromaSemanticStore.connect(
        settings.chroma_url,
        embedder,
        password=settings.chroma_password,
        collection_names=collection_names(settings),
    )

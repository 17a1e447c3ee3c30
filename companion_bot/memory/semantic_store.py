from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Protocol, Sequence
from urllib.parse import urlparse

import chromadb

logger = logging.getLogger("companion_bot")

PROFILE = "profile"
PERSONA = "persona"
SERVER_KNOWLEDGE = "server_knowledge"
HISTORY = "history"
COLLECTIONS = (PROFILE, PERSONA, SERVER_KNOWLEDGE, HISTORY)


class Embedder(Protocol):
    async def embed(self, texts: Sequence[str]) -> List[List[float]]: ...


@dataclass(slots=True)
class SemanticDocument:
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = ""
    distance: float | None = None


def flatten_metadata(metadata: Mapping[str, Any] | None) -> Dict[str, Any]:
    """Coerce metadata values into the primitives Chroma accepts."""
    flat: Dict[str, Any] = {}
    for key, value in (metadata or {}).items():
        if isinstance(value, (str, int, float, bool)):
            flat[key] = value
        elif value is None:
            continue
        elif isinstance(value, (list, tuple, set)):
            flat[key] = ",".join(map(str, value))
        else:
            try:
                flat[key] = json.dumps(value, ensure_ascii=False)
            except (TypeError, ValueError):
                flat[key] = str(value)
    return flat


def _metadatas(document: SemanticDocument) -> List[Dict[str, Any]] | None:
    flat = flatten_metadata(document.metadata)
    return [flat] if flat else None


def build_where(metadata_filter: Mapping[str, Any] | None) -> Dict[str, Any] | None:
    """Equality filter on every given field, joined by AND."""
    clauses = [{key: value} for key, value in flatten_metadata(metadata_filter).items()]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaSemanticStore:
    def __init__(
        self,
        client: Any,
        embedder: Embedder,
        collection_names: Mapping[str, str] | None = None,
    ) -> None:
        self.client = client
        self.embedder = embedder
        names = {name: name for name in COLLECTIONS}
        names.update(collection_names or {})
        self.collection_names = names
        self._collections: Dict[str, Any] = {}

    @classmethod
    async def connect(
        cls,
        url: str,
        embedder: Embedder,
        *,
        password: str = "",
        collection_names: Mapping[str, str] | None = None,
    ) -> "ChromaSemanticStore":
        parsed = urlparse(url)
        ssl = parsed.scheme == "https"
        headers = {"X-Chroma-Token": password} if password else None
        client = await chromadb.AsyncHttpClient(
            host=parsed.hostname or "localhost",
            port=parsed.port or (443 if ssl else 8000),
            ssl=ssl,
            headers=headers,
        )
        return cls(client, embedder, collection_names)

    async def _collection(self, collection: str) -> Any:
        if collection not in self.collection_names:
            raise ValueError(f"Unknown collection: {collection}")
        cached = self._collections.get(collection)
        if cached is not None:
            return cached
        handle = await self.client.get_or_create_collection(
            name=self.collection_names[collection],
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )
        self._collections[collection] = handle
        logger.info("[chroma] collection ready: %s", self.collection_names[collection])
        return handle

    async def ping(self) -> None:
        await self.client.heartbeat()
        for name in COLLECTIONS:
            await self._collection(name)

    async def add(self, collection: str, document: SemanticDocument) -> str:
        handle = await self._collection(collection)
        doc_id = document.id or str(uuid.uuid4())
        embeddings = await self.embedder.embed([document.content])
        await handle.add(
            ids=[doc_id],
            documents=[document.content],
            metadatas=_metadatas(document),
            embeddings=embeddings,
        )
        return doc_id

    async def upsert(self, collection: str, doc_id: str, document: SemanticDocument) -> str:
        handle = await self._collection(collection)
        embeddings = await self.embedder.embed([document.content])
        await handle.upsert(
            ids=[doc_id],
            documents=[document.content],
            metadatas=_metadatas(document),
            embeddings=embeddings,
        )
        return doc_id

    async def search(
        self,
        collection: str,
        query_text: str,
        k: int,
        metadata_filter: Mapping[str, Any] | None = None,
    ) -> List[SemanticDocument]:
        handle = await self._collection(collection)
        total = await handle.count()
        if total <= 0 or k <= 0:
            return []
        embeddings = await self.embedder.embed([query_text])
        result = await handle.query(
            query_embeddings=embeddings,
            n_results=min(k, total),
            where=build_where(metadata_filter),
            include=["documents", "metadatas", "distances"],
        )
        ids = (result.get("ids") or [[]])[0]
        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0] or [None] * len(ids)
        distances = (result.get("distances") or [[]])[0] or [None] * len(ids)
        found: List[SemanticDocument] = []
        for doc_id, content, metadata, distance in zip(ids, documents, metadatas, distances):
            found.append(
                SemanticDocument(
                    content=content or "",
                    metadata=dict(metadata or {}),
                    id=doc_id,
                    distance=distance,
                )
            )
        found.sort(key=lambda item: float("inf") if item.distance is None else item.distance)
        return found

    async def fetch(
        self,
        collection: str,
        metadata_filter: Mapping[str, Any],
        limit: int | None = None,
    ) -> List[SemanticDocument]:
        handle = await self._collection(collection)
        result = await handle.get(
            where=build_where(metadata_filter),
            limit=limit,
            include=["documents", "metadatas"],
        )
        ids = result.get("ids") or []
        documents = result.get("documents") or [""] * len(ids)
        metadatas = result.get("metadatas") or [None] * len(ids)
        return [
            SemanticDocument(content=content or "", metadata=dict(metadata or {}), id=doc_id)
            for doc_id, content, metadata in zip(ids, documents, metadatas)
        ]

    async def delete_where(self, collection: str, metadata_filter: Mapping[str, Any]) -> None:
        where = build_where(metadata_filter)
        if where is None:
            raise ValueError("delete_where requires at least one metadata field")
        handle = await self._collection(collection)
        await handle.delete(where=where)

from __future__ import annotations

import math
import re
from collections import Counter
from typing import Any, Awaitable, Callable, Iterable, Protocol

from qdrant_client import AsyncQdrantClient

from ..core.config import Settings, get_settings
from ..core.logging import get_logger
from ..orchestration.registry import DEFAULT_MODULES, ModuleCapability
from ..orchestration.state import ScoredCandidate
from ..tools.catalog import DEFAULT_TOOLS, ToolDescriptor

logger = get_logger(name=__name__)

Embedder = Callable[[str], Awaitable[list[float]]]


class SemanticIndex(Protocol):
    async def search(self, collection: str, query: str, top_k: int, min_score: float) -> list[ScoredCandidate]:
        ...


_TOKEN = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset(
    {"a", "an", "and", "the", "of", "to", "for", "in", "on", "is", "it", "me", "my", "i", "you", "this", "that",
     "with", "what", "how", "can", "please", "or", "be", "are", "do", "does", "from", "by", "at", "as", "into"}
)


def _tokens(text: str) -> Counter[str]:
    terms: Counter[str] = Counter()
    for token in _TOKEN.findall(text.lower()):
        if token in _STOPWORDS:
            continue
        if len(token) > 4 and token.endswith("s"):
            token = token[:-1]
        terms[token] += 1
    return terms


def _cosine(left: Counter[str], right: Counter[str]) -> float:
    if not left or not right:
        return 0.0
    dot = sum(count * right[token] for token, count in left.items() if token in right)
    if not dot:
        return 0.0
    norm = math.sqrt(sum(v * v for v in left.values())) * math.sqrt(sum(v * v for v in right.values()))
    return min(1.0, dot / norm)


class InMemorySemanticIndex:
    """Bag-of-words cosine similarity over registered descriptions.

    Used offline and in tests; production deployments back the same protocol
    with a vector database.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Counter[str]]] = {}

    @classmethod
    def with_defaults(
        cls,
        *,
        tool_collection: str = "tools",
        module_collection: str = "modules",
        tools: Iterable[ToolDescriptor] = DEFAULT_TOOLS,
        modules: Iterable[ModuleCapability] = DEFAULT_MODULES,
    ) -> "InMemorySemanticIndex":
        index = cls()
        for tool in tools:
            index.add(tool_collection, tool.tool_id, tool.description)
        for module in modules:
            if not module.core:
                index.add(module_collection, module.module_id, module.description)
        return index

    def add(self, collection: str, item_id: str, description: str) -> None:
        # The identifier's own words ("code.stacktrace") are indexed with the description.
        self._collections.setdefault(collection, {})[item_id] = _tokens(f"{item_id.replace('.', ' ').replace('_', ' ')} {description}")

    async def search(self, collection: str, query: str, top_k: int, min_score: float) -> list[ScoredCandidate]:
        entries = self._collections.get(collection, {})
        query_terms = _tokens(query)
        scored = [
            ScoredCandidate(id=item_id, score=round(score, 6))
            for item_id, terms in entries.items()
            if (score := _cosine(query_terms, terms)) >= min_score and score > 0.0
        ]
        scored.sort(key=lambda candidate: (-candidate.score, candidate.id))
        return scored[:top_k]


class QdrantSemanticIndex:
    """Similarity search against Qdrant collections whose payload carries the item id."""

    def __init__(self, *, client: AsyncQdrantClient, embedder: Embedder, id_field: str = "id") -> None:
        self._client = client
        self._embedder = embedder
        self._id_field = id_field

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, embedder: Embedder) -> "QdrantSemanticIndex":
        settings = settings or get_settings()
        client = AsyncQdrantClient(url=settings.qdrant.url, api_key=settings.qdrant.api_key)
        return cls(client=client, embedder=embedder)

    async def search(self, collection: str, query: str, top_k: int, min_score: float) -> list[ScoredCandidate]:
        vector = await self._embedder(query)
        response = await self._client.query_points(
            collection_name=collection,
            query=vector,
            limit=top_k,
            score_threshold=min_score,
            with_payload=True,
        )
        results: list[ScoredCandidate] = []
        for point in response.points:
            payload: dict[str, Any] = dict(point.payload or {})
            item_id = payload.get(self._id_field) or str(point.id)
            results.append(ScoredCandidate(id=str(item_id), score=max(0.0, min(1.0, float(point.score)))))
        logger.debug("qdrant_search", collection=collection, hits=len(results))
        return results

    async def close(self) -> None:
        await self._client.close()


__all__ = ["Embedder", "SemanticIndex", "InMemorySemanticIndex", "QdrantSemanticIndex"]

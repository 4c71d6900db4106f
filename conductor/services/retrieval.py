from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass

from ..core.config import RetrievalSettings, Settings, get_settings
from ..core.logging import get_logger
from ..core.metrics import record_retrieval_degraded, record_retrieval_results
from ..orchestration.exceptions import RetrievalDegraded
from ..orchestration.state import RetrievalState, ScoredCandidate
from .semantic_index import SemanticIndex

logger = get_logger(name=__name__)

_CODE_MARKERS = re.compile(
    r"```|`[^`]+`|[{};]|\bdef\s|\bclass\s|\bimport\s|\w+\(.*\)"
    r"|\b\w+\.(?:py|js|ts|java|go|rb|rs|cpp|json|ya?ml|sql|toml)\b"
)


@dataclass(slots=True)
class RetrievalConfig:
    tool_collection: str = "tools"
    module_collection: str = "modules"
    short_query_chars: int = 40
    simple_top_k: int = 2
    complex_top_k: int = 5
    min_score: float = 0.3
    timeout_seconds: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings | RetrievalSettings | None = None) -> "RetrievalConfig":
        if settings is None:
            settings = get_settings()
        section = settings.retrieval if isinstance(settings, Settings) else settings
        return cls(
            tool_collection=section.tool_collection,
            module_collection=section.module_collection,
            short_query_chars=section.short_query_chars,
            simple_top_k=section.simple_top_k,
            complex_top_k=section.complex_top_k,
            min_score=section.min_score,
            timeout_seconds=section.search_timeout_seconds,
        )


def is_code_bearing(query: str) -> bool:
    return bool(_CODE_MARKERS.search(query))


class Retriever:
    """Runs the tool and module searches concurrently for one query.

    A search that fails or outlives its timeout contributes an empty list and
    marks its side of the state as degraded; it never fails the request.
    """

    def __init__(self, *, index: SemanticIndex, config: RetrievalConfig | None = None) -> None:
        self._index = index
        self._config = config or RetrievalConfig()

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, index: SemanticIndex) -> "Retriever":
        return cls(index=index, config=RetrievalConfig.from_settings(settings))

    def top_k_for(self, query: str) -> int:
        text = query.strip()
        if len(text) < self._config.short_query_chars and not is_code_bearing(text):
            return self._config.simple_top_k
        return self._config.complex_top_k

    async def retrieve(self, query: str) -> RetrievalState:
        top_k = self.top_k_for(query)
        (tools, tools_degraded), (modules, modules_degraded) = await asyncio.gather(
            self._search(self._config.tool_collection, query, top_k),
            self._search(self._config.module_collection, query, top_k),
        )
        logger.info(
            "retrieval_completed",
            top_k=top_k,
            tools=[candidate.id for candidate in tools],
            modules=[candidate.id for candidate in modules],
            degraded=tools_degraded or modules_degraded,
        )
        return RetrievalState(
            raw_query=query,
            suggested_tools=tuple(tools),
            suggested_modules=tuple(modules),
            tools_degraded=tools_degraded,
            modules_degraded=modules_degraded,
        )

    async def _search(self, collection: str, query: str, top_k: int) -> tuple[list[ScoredCandidate], bool]:
        try:
            results = await self._guarded_search(collection, query, top_k)
        except RetrievalDegraded as exc:
            record_retrieval_degraded(collection=collection, reason=exc.reason)
            logger.warning("retrieval_degraded", collection=collection, reason=exc.reason)
            return [], True
        record_retrieval_results(collection=collection, count=len(results))
        return results, False

    async def _guarded_search(self, collection: str, query: str, top_k: int) -> list[ScoredCandidate]:
        try:
            results = await asyncio.wait_for(
                self._index.search(collection, query, top_k, self._config.min_score),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise RetrievalDegraded(collection, "timeout") from exc
        except Exception as exc:
            logger.exception("retrieval_search_failed", collection=collection)
            raise RetrievalDegraded(collection, type(exc).__name__) from exc
        ranked = sorted(
            (candidate for candidate in results if candidate.score >= self._config.min_score),
            key=lambda candidate: (-candidate.score, candidate.id),
        )
        return ranked[:top_k]


__all__ = ["RetrievalConfig", "Retriever", "is_code_bearing"]

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, Protocol, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from ..core.config import LLMSettings, Settings, get_settings
from ..core.logging import get_logger
from ..orchestration.exceptions import ModelInvocationError

try:  # pragma: no cover - optional heavy dependency
    from langchain_ollama import ChatOllama
except ModuleNotFoundError:  # pragma: no cover
    ChatOllama = None  # type: ignore[misc, assignment]

logger = get_logger(name=__name__)

LLM_MAX_DELAY = 10.0  # seconds


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True, slots=True)
class Completion:
    text: str
    tools_used: tuple[str, ...] = field(default_factory=tuple)


class ModelInvoker(Protocol):
    async def complete(
        self,
        history: Sequence[ConversationTurn],
        system_directives: Sequence[str],
        user_message: str,
    ) -> Completion:
        ...


def _build_base_url(host: str, port: int) -> str:
    if ":" in host.rsplit("/", maxsplit=1)[-1]:
        return host.rstrip("/")
    return f"{host.rstrip('/')}:{port}"


def build_messages(
    history: Sequence[ConversationTurn],
    system_directives: Sequence[str],
    user_message: str,
) -> list[BaseMessage]:
    """System directives lead, prior turns follow in order, the new message is last."""
    messages: list[BaseMessage] = []
    directives = "\n\n".join(directive for directive in system_directives if directive)
    if directives:
        messages.append(SystemMessage(content=directives))
    for turn in history:
        if turn.role == "assistant":
            messages.append(AIMessage(content=turn.content))
        else:
            messages.append(HumanMessage(content=turn.content))
    messages.append(HumanMessage(content=user_message))
    return messages


@dataclass
class LLMService:
    """LangChain chat client for Ollama models that raises instead of degrading."""

    settings: LLMSettings
    _client: Any
    model: str
    _client_cache: ClassVar[dict[str, Any]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        model: str | None = None,
        client: Any | None = None,
    ) -> "LLMService":
        llm_settings = (settings or get_settings()).llm
        ollama = llm_settings.ollama
        model_name = model or ollama.model
        if client is None:
            cache_key = f"{ollama.host}:{ollama.port}:{model_name}"
            cached = cls._client_cache.get(cache_key)
            if cached is None:
                if ChatOllama is None:  # pragma: no cover - handled in runtime logs
                    raise ModelInvocationError("langchain_ollama is not installed")
                base_url = _build_base_url(ollama.host, ollama.port)
                cached = ChatOllama(model=model_name, base_url=base_url, temperature=ollama.temperature)
                cls._client_cache[cache_key] = cached
            client = cached
        return cls(settings=llm_settings, _client=client, model=model_name)

    async def complete(
        self,
        history: Sequence[ConversationTurn],
        system_directives: Sequence[str],
        user_message: str,
    ) -> Completion:
        messages = build_messages(history, system_directives, user_message)
        attempts = self.settings.max_retries + 1
        last_error: Exception | None = None
        for attempt in range(attempts):
            try:
                result = await asyncio.wait_for(
                    self._client.ainvoke(messages),
                    timeout=self.settings.timeout_seconds,
                )
            except asyncio.TimeoutError as exc:
                last_error = exc
                logger.warning(
                    "llm_generation_timeout",
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    timeout=self.settings.timeout_seconds,
                    model=self.model,
                )
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "llm_generation_retry",
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    error=str(exc),
                    model=self.model,
                )
            else:
                text = _extract_content(result).strip()
                if not text:
                    raise ModelInvocationError(f"Model '{self.model}' returned an empty response")
                return Completion(text=text, tools_used=_extract_tool_calls(result))

            if attempt < attempts - 1:
                delay = min(self.settings.backoff_seconds * (2**attempt), LLM_MAX_DELAY)
                await asyncio.sleep(delay)

        logger.error(
            "model_invocation_failed",
            error=str(last_error) if last_error else "unknown error",
            model=self.model,
            attempts=attempts,
        )
        raise ModelInvocationError(f"Model '{self.model}' failed after {attempts} attempts") from last_error


def _extract_content(result: Any) -> str:
    content = result.content if hasattr(result, "content") else result
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                parts.append(str(item.get("text", "")))
            else:
                parts.append(str(item))
        return " ".join(part for part in parts if part)
    return str(content)


def _extract_tool_calls(result: Any) -> tuple[str, ...]:
    calls = getattr(result, "tool_calls", None) or []
    names: list[str] = []
    for call in calls:
        name = call.get("name") if isinstance(call, dict) else getattr(call, "name", None)
        if name and name not in names:
            names.append(str(name))
    return tuple(names)


__all__ = ["Completion", "ConversationTurn", "LLMService", "ModelInvoker", "build_messages"]

"""
Chat capability backed by a LangChain chat model.

DeepSeek exposes an OpenAI-compatible API, so the default model is
`ChatOpenAI` pointed at the configured base URL. Any `BaseChatModel` works,
which is how tests plug in LangChain's fake chat models.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Sequence

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from lesson_agent.domain.interfaces.chat_model import ChatMessage, ChatOptions, ChatResult
from lesson_agent.domain.usage import TokenUsage
from lesson_agent.infrastructure.observability.logger_config import elapsed_ms, perf_now

logger = structlog.get_logger(__name__)


def _to_langchain(message: ChatMessage) -> BaseMessage:
    if message.role == "system":
        return SystemMessage(content=message.content)
    if message.role == "assistant":
        return AIMessage(content=message.content)
    return HumanMessage(content=message.content)


def _message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(str(part.get("text") or ""))
    return "".join(parts)


def _usage_of(message: BaseMessage) -> TokenUsage:
    usage = getattr(message, "usage_metadata", None)
    if usage:
        return TokenUsage.from_mapping(usage)
    metadata = getattr(message, "response_metadata", None) or {}
    return TokenUsage.from_mapping(metadata.get("token_usage"))


def _is_retryable(exc: BaseException) -> bool:
    # CancelledError is a BaseException; it must propagate, never trigger another call.
    return isinstance(exc, Exception) and not isinstance(exc, (ValueError, TypeError))


class LangChainChatClient:
    def __init__(
        self,
        model: BaseChatModel,
        *,
        max_attempts: int = 3,
        retry_wait: Any = None,
        model_for_key: Optional[Callable[[str], BaseChatModel]] = None,
    ):
        self._model = model
        self._model_for_key = model_for_key
        self._max_attempts = max(1, int(max_attempts))
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)

    async def chat(
        self, messages: Sequence[ChatMessage], options: Optional[ChatOptions] = None
    ) -> ChatResult:
        overrides: dict[str, Any] = {}
        if options is not None and options.temperature is not None:
            overrides["temperature"] = options.temperature
        if options is not None and options.max_tokens is not None:
            overrides["max_tokens"] = options.max_tokens
        model = self._resolve_model(options.api_key if options is not None else None)
        runnable = model.bind(**overrides) if overrides else model
        payload = [_to_langchain(message) for message in messages]

        started = perf_now()
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                response = await runnable.ainvoke(payload)
        usage = _usage_of(response)
        logger.debug(
            "chat_completed",
            duration_ms=elapsed_ms(started),
            attempts=attempt.retry_state.attempt_number,
            total_tokens=usage.total_tokens,
        )
        return ChatResult(text=_message_text(response), usage=usage)

    def _resolve_model(self, api_key: Optional[str]) -> BaseChatModel:
        if not api_key:
            return self._model
        if self._model_for_key is None:
            logger.warning("chat_api_key_override_ignored", reason="no model factory configured")
            return self._model
        return self._model_for_key(api_key)


def build_chat_model(settings: Any, api_key: Optional[str] = None) -> BaseChatModel:
    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=settings.LLM_MODEL,
        api_key=api_key or settings.LLM_API_KEY or None,
        base_url=settings.LLM_BASE_URL,
        temperature=settings.LLM_TEMPERATURE,
        max_tokens=settings.LLM_MAX_TOKENS,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        max_retries=0,
    )

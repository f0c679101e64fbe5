from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Protocol, Sequence

from lesson_agent.domain.usage import TokenUsage, ZERO_USAGE


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class ChatOptions:
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    api_key: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class ChatResult:
    text: str
    usage: TokenUsage = ZERO_USAGE


class IChatModel(Protocol):
    """Chat-completion capability: `chat(messages, opts) -> (text, usage)`."""

    async def chat(
        self, messages: Sequence[ChatMessage], options: Optional[ChatOptions] = None
    ) -> ChatResult: ...

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self) -> None:
        if min(self.prompt_tokens, self.completion_tokens, self.total_tokens) < 0:
            raise ValueError("token counts must be non-negative")

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        if not isinstance(other, TokenUsage):
            return NotImplemented
        return merge_usage(self, other)

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "TokenUsage":
        """Accepts both OpenAI (`prompt_tokens`) and LangChain (`input_tokens`) keys."""
        if not raw:
            return ZERO_USAGE
        prompt = _as_count(raw.get("prompt_tokens", raw.get("input_tokens")))
        completion = _as_count(raw.get("completion_tokens", raw.get("output_tokens")))
        total = _as_count(raw.get("total_tokens")) or prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    def to_payload(self) -> dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


ZERO_USAGE = TokenUsage()


def _as_count(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


def merge_usage(*usages: Optional[TokenUsage]) -> TokenUsage:
    """Pointwise sum; absent inputs count as zero, so any grouping gives the same total."""
    prompt = completion = total = 0
    for usage in usages:
        if usage is None:
            continue
        prompt += usage.prompt_tokens
        completion += usage.completion_tokens
        total += usage.total_tokens
    return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

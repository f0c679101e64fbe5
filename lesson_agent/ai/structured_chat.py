"""
Structured chat - JSON-constrained generation over the chat capability.

The chat port only returns text, so the schema travels as an instruction in
the system prompt and the reply is parsed and validated with Pydantic.
Unparseable replies are retried; the token cost of every attempt is kept.
"""

from __future__ import annotations

import json
import re
from dataclasses import replace
from typing import Optional, Sequence, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError as PydanticValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from lesson_agent.domain.exceptions import StructuredOutputError
from lesson_agent.domain.interfaces.chat_model import ChatMessage, ChatOptions, ChatResult, IChatModel
from lesson_agent.domain.usage import TokenUsage, ZERO_USAGE, merge_usage

logger = structlog.get_logger(__name__)
T = TypeVar("T", bound=BaseModel)

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")
DEFAULT_STRUCTURED_TEMPERATURE = 0.3


def _schema_instruction(schema_example: str) -> str:
    return (
        "You must respond with valid JSON that matches this schema:\n"
        f"{schema_example}\n\n"
        "Only output the JSON, no other text."
    )


def parse_json_reply(text: str, schema: Type[T]) -> T:
    match = _JSON_BLOCK.search(text or "")
    if not match:
        raise StructuredOutputError("模型未返回有效的JSON", raw_text=text or "")
    try:
        return schema.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, PydanticValidationError) as exc:
        raise StructuredOutputError(f"模型返回的JSON无法解析: {exc}", raw_text=text) from exc


class StructuredChat:
    def __init__(self, chat_model: IChatModel, max_attempts: int = 2):
        self._chat_model = chat_model
        self._max_attempts = max(1, int(max_attempts))

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        options: Optional[ChatOptions] = None,
    ) -> ChatResult:
        return await self._chat_model.chat(list(messages), options or ChatOptions())

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        schema: Type[T],
        schema_example: str,
        options: Optional[ChatOptions] = None,
    ) -> tuple[T, TokenUsage]:
        resolved = options or ChatOptions()
        if resolved.temperature is None:
            resolved = replace(resolved, temperature=DEFAULT_STRUCTURED_TEMPERATURE)
        prompt = [ChatMessage(role="system", content=_schema_instruction(schema_example)), *messages]

        spent = ZERO_USAGE
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type(StructuredOutputError),
            reraise=True,
        ):
            with attempt:
                result = await self._chat_model.chat(prompt, resolved)
                spent = merge_usage(spent, result.usage)
                try:
                    return parse_json_reply(result.text, schema), spent
                except StructuredOutputError as exc:
                    logger.warning(
                        "structured_output_invalid",
                        schema=schema.__name__,
                        attempt=attempt.retry_state.attempt_number,
                        error=exc.message[:200],
                    )
                    exc.usage = spent
                    raise

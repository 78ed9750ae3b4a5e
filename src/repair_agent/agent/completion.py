"""Completion-service contract and its LangChain chat-model adapter."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder
from pydantic import BaseModel

from repair_agent.errors import RateLimitedError, is_rate_limit_error
from repair_agent.types import ConversationTurn

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CompletionResult:
    text: str
    structured_output: BaseModel | None = None
    usage: dict[str, Any] = field(default_factory=dict)


class CompletionService(Protocol):
    """Prompt in, free text or a schema-validated object out.

    With `output_schema`, a response that fails validation yields
    `structured_output=None` instead of raising.
    """

    async def complete(
        self,
        system_instruction: str,
        history: Sequence[ConversationTurn],
        prompt: str,
        output_schema: type[BaseModel] | None = None,
    ) -> CompletionResult:
        ...


_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{system_instruction}"),
        MessagesPlaceholder(variable_name="history", optional=True),
        ("human", "{prompt}"),
    ]
)


def to_messages(history: Sequence[ConversationTurn]) -> list[BaseMessage]:
    return [
        HumanMessage(content=turn.text) if turn.role == "user" else AIMessage(content=turn.text)
        for turn in history
    ]


class LangChainCompletionService:
    """Adapts any langchain-core chat model to `CompletionService`."""

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    async def complete(
        self,
        system_instruction: str,
        history: Sequence[ConversationTurn],
        prompt: str,
        output_schema: type[BaseModel] | None = None,
    ) -> CompletionResult:
        variables = {
            "system_instruction": system_instruction,
            "history": to_messages(history),
            "prompt": prompt,
        }
        try:
            if output_schema is None:
                message = await (_PROMPT | self.llm).ainvoke(variables)
                return CompletionResult(text=_message_text(message), usage=_usage(message))

            chain = _PROMPT | self.llm.with_structured_output(output_schema, include_raw=True)
            result = await chain.ainvoke(variables)
        except Exception as exc:
            if is_rate_limit_error(exc):
                raise RateLimitedError(str(exc)) from exc
            raise

        raw = result.get("raw")
        parsed = result.get("parsed")
        if result.get("parsing_error") is not None or not isinstance(parsed, output_schema):
            logger.warning(
                "Structured output failed validation for %s: %s",
                output_schema.__name__,
                result.get("parsing_error"),
            )
            parsed = None
        return CompletionResult(text=_message_text(raw), structured_output=parsed, usage=_usage(raw))


def _message_text(message: Any) -> str:
    content = getattr(message, "content", "")
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content or "")


def _usage(message: Any) -> dict[str, Any]:
    usage = getattr(message, "usage_metadata", None)
    return dict(usage) if usage else {}

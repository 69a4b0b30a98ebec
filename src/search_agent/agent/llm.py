"""LangChain-backed LLM facade used by the orchestrator, repair and tools."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Any, TypeVar

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from search_agent.config import Settings

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class LLMClient:
    """Three capabilities over one chat model.

    - `select_tools`: a tool-forced turn at temperature 0.
    - `stream_text`: a tool-free streamed turn.
    - `generate_object`: a structured-output request validated against a
      Pydantic schema.

    The wrapped model is constructed once per process; this class holds no
    request state.
    """

    def __init__(self, model: BaseChatModel) -> None:
        self.model = model

    async def select_tools(
        self,
        messages: Sequence[BaseMessage],
        *,
        tools: Sequence[dict[str, Any]],
        system_prompt: str,
    ) -> AIMessage:
        bound = self.model.bind_tools(list(tools), tool_choice="required")
        response = await bound.ainvoke(
            [SystemMessage(content=system_prompt), *messages],
            temperature=0,
        )
        if not isinstance(response, AIMessage):
            return AIMessage(content=str(getattr(response, "content", response)))
        return response

    async def stream_text(
        self,
        messages: Sequence[BaseMessage],
        *,
        system_prompt: str,
    ) -> AsyncIterator[str]:
        async for chunk in self.model.astream([SystemMessage(content=system_prompt), *messages]):
            text = _content_text(chunk.content)
            if text:
                yield text

    async def generate_object(
        self,
        schema: type[SchemaT],
        *,
        prompt: str,
        system_prompt: str | None = None,
        history: Sequence[BaseMessage] = (),
        temperature: float | None = None,
    ) -> SchemaT:
        structured = self.model.with_structured_output(schema)
        messages: list[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.extend(history)
        messages.append(HumanMessage(content=prompt))

        kwargs: dict[str, Any] = {}
        if temperature is not None:
            kwargs["temperature"] = temperature
        result = await structured.ainvoke(messages, **kwargs)
        if isinstance(result, schema):
            return result
        return schema.model_validate(result)


def create_chat_model(settings: Settings) -> BaseChatModel:
    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=settings.OPENAI_MODEL,
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        max_retries=0,
    )


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return ""

"""Conversation message variants validated at the API boundary."""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from langchain_core.messages import ToolMessage as LCToolMessage
from pydantic import BaseModel, Field


class UserMessage(BaseModel):
    role: Literal["user"]
    content: str


class AssistantMessage(BaseModel):
    role: Literal["assistant"]
    content: str = ""


class ToolMessage(BaseModel):
    """A tool result from an earlier turn, replayed as call + result."""

    role: Literal["tool"]
    tool_call_id: str = Field(min_length=1)
    tool_name: str = Field(min_length=1)
    content: Any = None


ConversationMessage = Annotated[
    Union[UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]


def to_langchain_messages(messages: list[ConversationMessage]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in messages:
        if isinstance(message, UserMessage):
            converted.append(HumanMessage(content=message.content))
        elif isinstance(message, AssistantMessage):
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(
                AIMessage(
                    content="",
                    tool_calls=[
                        {"name": message.tool_name, "args": {}, "id": message.tool_call_id}
                    ],
                )
            )
            converted.append(
                LCToolMessage(
                    content=_stringify(message.content),
                    tool_call_id=message.tool_call_id,
                )
            )
    return converted


def last_user_text(messages: list[ConversationMessage]) -> str:
    for message in reversed(messages):
        if isinstance(message, UserMessage):
            return message.content
    return ""


def _stringify(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=False, default=str)

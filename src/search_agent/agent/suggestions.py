"""Follow-up question suggestions from conversation history."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from search_agent.conversation import ConversationMessage, to_langchain_messages

_SYSTEM_PROMPT = """
You generate follow-up search questions from the conversation so far.

Rules:
1) Produce exactly 3 open-ended questions of 5-10 words each.
2) Carry the conversation's context so each question stands alone as a search.
3) Use proper nouns from the context; never use pronouns like he, she or his.
4) Stay on the conversation's topic without becoming too general or too narrow.
""".strip()


class SuggestedQuestions(BaseModel):
    questions: list[str] = Field(
        min_length=3,
        max_length=3,
        description="The generated questions based on the message history.",
    )


async def suggest_questions(llm: Any, messages: list[ConversationMessage]) -> list[str]:
    suggestion = await llm.generate_object(
        SuggestedQuestions,
        system_prompt=_SYSTEM_PROMPT,
        history=to_langchain_messages(messages),
        prompt="Suggest the next three questions.",
        temperature=0,
    )
    return [question.strip() for question in suggestion.questions]

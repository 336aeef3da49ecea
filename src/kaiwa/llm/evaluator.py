"""
Text-evaluation collaborator.

The engine talks to the language model only through the
``ConversationEvaluator`` protocol: character replies, axis scores, hints,
and proficiency estimates. ``AnthropicEvaluator`` is the production
implementation; tests substitute an AsyncMock.
"""

import json
import logging
import re
from collections.abc import Sequence
from typing import Any, Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError as PydanticValidationError

from kaiwa.errors import UpstreamEvaluationError
from kaiwa.llm.prompts import (
    build_assessment_prompt,
    build_hint_prompt,
    build_proficiency_prompt,
    build_task_system_prompt,
)
from kaiwa.models import AxisScores, ConversationContext, EvaluationResult, JLPTLevel, MessageRole
from kaiwa.services.conversation import get_current_objective
from kaiwa.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# Anthropic requires the first turn to come from the user
OPENING_TURN = "(The student has joined the conversation. Greet them and open the scenario.)"

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class ConversationEvaluator(Protocol):
    """What the engine needs from a language model."""

    async def generate_reply(self, context: ConversationContext) -> str: ...

    async def generate_assessment(self, context: ConversationContext) -> EvaluationResult: ...

    async def generate_hints(self, context: ConversationContext) -> str: ...

    async def estimate_proficiency_level(
        self, history: Sequence[tuple[AxisScores, JLPTLevel]]
    ) -> JLPTLevel: ...


def response_text(response: BaseMessage) -> str:
    """Flatten a chat response into plain text (content may be a list of blocks)."""
    content = response.content
    if isinstance(content, str):
        return content.strip()
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts).strip()


def parse_json_response(text: str) -> dict[str, Any]:
    """
    Parse a JSON object out of a model response.

    Tolerates a surrounding ```json fence.

    Raises:
        UpstreamEvaluationError: If no JSON object can be read
    """
    cleaned = _CODE_FENCE.sub("", text.strip()).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise UpstreamEvaluationError(f"Evaluator returned malformed JSON: {e}") from e

    if not isinstance(data, dict):
        raise UpstreamEvaluationError(
            f"Evaluator returned {type(data).__name__}, expected a JSON object"
        )
    return data


def to_chat_messages(context: ConversationContext) -> list[BaseMessage]:
    """Conversation log as langchain messages, opening with a user turn."""
    messages: list[BaseMessage] = []
    for message in context.conversation_history:
        if message.role == MessageRole.USER:
            messages.append(HumanMessage(content=message.content))
        else:
            messages.append(AIMessage(content=message.content))

    if not messages or not isinstance(messages[0], HumanMessage):
        messages.insert(0, HumanMessage(content=OPENING_TURN))
    return messages


class AnthropicEvaluator:
    """
    ConversationEvaluator backed by Claude via langchain-anthropic.

    Two model handles share one configuration except for temperature: the
    reply model plays the character, the scoring model grades.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        reply_model: BaseChatModel | None = None,
        scoring_model: BaseChatModel | None = None,
    ):
        settings = settings or get_settings()
        self.reply_model = reply_model or self._create_model(settings, settings.reply_temperature)
        self.scoring_model = scoring_model or self._create_model(
            settings, settings.assessment_temperature
        )

    @staticmethod
    def _create_model(settings: Settings, temperature: float) -> ChatAnthropic:
        kwargs: dict[str, Any] = {
            "model": settings.evaluator_model,
            "temperature": temperature,
            "max_tokens": settings.max_tokens,
            "timeout": settings.evaluator_timeout,
        }
        if settings.anthropic_api_key:
            kwargs["api_key"] = settings.anthropic_api_key
        return ChatAnthropic(**kwargs)

    async def _invoke(self, model: BaseChatModel, messages: list[BaseMessage]) -> str:
        try:
            response = await model.ainvoke(messages)
        except Exception as e:
            logger.warning("Evaluator call failed: %s", e)
            raise UpstreamEvaluationError(f"Evaluator call failed: {e}") from e

        text = response_text(response)
        if not text:
            raise UpstreamEvaluationError("Evaluator returned an empty response")
        return text

    async def generate_reply(self, context: ConversationContext) -> str:
        """The character's next line in the conversation."""
        system_prompt = build_task_system_prompt(
            context.task, context.user_proficiency, context.character
        )
        messages = [SystemMessage(content=system_prompt), *to_chat_messages(context)]
        return await self._invoke(self.reply_model, messages)

    async def generate_assessment(self, context: ConversationContext) -> EvaluationResult:
        """
        Score the conversation on the four axes.

        Scores are returned as given; range checking happens at completion.

        Raises:
            UpstreamEvaluationError: On call failure or unreadable output
        """
        prompt = build_assessment_prompt(
            context.task, context.conversation_history, context.user_proficiency
        )
        text = await self._invoke(self.scoring_model, [HumanMessage(content=prompt)])
        data = parse_json_response(text)

        try:
            return EvaluationResult.model_validate(data)
        except PydanticValidationError as e:
            raise UpstreamEvaluationError(f"Evaluator assessment is incomplete: {e}") from e

    async def generate_hints(self, context: ConversationContext) -> str:
        """
        A hint for the current objective.

        Returns an empty string when every objective is already behind the
        learner, without calling the model.
        """
        objective = get_current_objective(context)
        if objective is None:
            return ""

        prompt = build_hint_prompt(
            context.task, objective, context.conversation_history, context.user_proficiency
        )
        return await self._invoke(self.reply_model, [HumanMessage(content=prompt)])

    async def estimate_proficiency_level(
        self, history: Sequence[tuple[AxisScores, JLPTLevel]]
    ) -> JLPTLevel:
        """
        Estimate the learner's JLPT level from past scores.

        An empty history is N5 and makes no call.
        """
        if not history:
            return JLPTLevel.N5

        text = await self._invoke(
            self.scoring_model, [HumanMessage(content=build_proficiency_prompt(history))]
        )
        data = parse_json_response(text)

        try:
            return JLPTLevel(str(data.get("estimated_level", "")).upper())
        except ValueError as e:
            raise UpstreamEvaluationError(
                f"Evaluator returned unknown JLPT level {data.get('estimated_level')!r}"
            ) from e

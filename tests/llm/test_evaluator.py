"""
Tests for the Anthropic-backed conversation evaluator.

The chat models are replaced with AsyncMocks returning canned AIMessages, so
no network calls are made.
"""

import json
from unittest.mock import AsyncMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from kaiwa.errors import UpstreamEvaluationError
from kaiwa.llm.evaluator import (
    OPENING_TURN,
    AnthropicEvaluator,
    parse_json_response,
    response_text,
    to_chat_messages,
)
from kaiwa.models import AxisScores, JLPTLevel, MessageRole
from kaiwa.services.conversation import add_message, complete_objective, initialize_context
from kaiwa.settings import Settings

ASSESSMENT_JSON = {
    "task_achievement": 85,
    "fluency": 72,
    "vocabulary_grammar_accuracy": 64,
    "politeness": 90,
    "specific_feedback": {"politeness": "丁寧でした"},
    "strengths": ["Polite requests"],
    "areas_for_improvement": ["Particles"],
    "overall_feedback": "Well done",
}


def chat_model(*replies) -> AsyncMock:
    model = AsyncMock()
    model.ainvoke.side_effect = [
        reply if isinstance(reply, Exception) else AIMessage(content=reply) for reply in replies
    ]
    return model


def make_evaluator(reply_model=None, scoring_model=None) -> AnthropicEvaluator:
    return AnthropicEvaluator(
        settings=Settings(),
        reply_model=reply_model or chat_model(),
        scoring_model=scoring_model or chat_model(),
    )


@pytest.fixture
def context(task_definition, character):
    context = initialize_context(task_definition, JLPTLevel.N4, character=character)
    context = add_message(context, MessageRole.USER, "すみません")
    return add_message(context, MessageRole.ASSISTANT, "はい、いらっしゃいませ")


# ============================================================================
# Response handling
# ============================================================================


def test_response_text_flattens_blocks():
    message = AIMessage(
        content=[{"type": "text", "text": "こんにちは"}, {"type": "tool_use", "id": "x"}, "！"]
    )

    assert response_text(message) == "こんにちは！"


def test_parse_json_strips_code_fence():
    text = "```json\n" + json.dumps(ASSESSMENT_JSON) + "\n```"

    assert parse_json_response(text)["fluency"] == 72


@pytest.mark.parametrize("text", ["Sorry, I can't score that.", "[1, 2, 3]", ""])
def test_parse_json_rejects_non_objects(text):
    with pytest.raises(UpstreamEvaluationError):
        parse_json_response(text)


def test_chat_messages_open_with_user_turn(task_definition):
    context = add_message(
        initialize_context(task_definition, JLPTLevel.N5), MessageRole.ASSISTANT, "いらっしゃいませ"
    )

    messages = to_chat_messages(context)

    assert isinstance(messages[0], HumanMessage)
    assert messages[0].content == OPENING_TURN
    assert isinstance(messages[1], AIMessage)


def test_chat_messages_keep_order(context):
    messages = to_chat_messages(context)

    assert [type(m) for m in messages] == [HumanMessage, AIMessage]
    assert messages[0].content == "すみません"


# ============================================================================
# Replies and hints
# ============================================================================


@pytest.mark.asyncio
async def test_generate_reply(context):
    reply_model = chat_model("切符ですね。どちらまでですか？")
    evaluator = make_evaluator(reply_model=reply_model)

    reply = await evaluator.generate_reply(context)

    assert reply == "切符ですね。どちらまでですか？"
    sent = reply_model.ainvoke.await_args.args[0]
    assert isinstance(sent[0], SystemMessage)
    assert "田中さん" in sent[0].content
    assert "Greet the clerk" in sent[0].content
    assert "N4" in sent[0].content
    assert [m.content for m in sent[1:]] == ["すみません", "はい、いらっしゃいませ"]


@pytest.mark.asyncio
async def test_generate_reply_wraps_client_errors(context):
    evaluator = make_evaluator(reply_model=chat_model(RuntimeError("overloaded")))

    with pytest.raises(UpstreamEvaluationError, match="overloaded"):
        await evaluator.generate_reply(context)


@pytest.mark.asyncio
async def test_generate_reply_rejects_empty_response(context):
    evaluator = make_evaluator(reply_model=chat_model("   "))

    with pytest.raises(UpstreamEvaluationError):
        await evaluator.generate_reply(context)


@pytest.mark.asyncio
async def test_generate_hints_targets_current_objective(context):
    reply_model = chat_model("「すみません」から始めましょう")
    evaluator = make_evaluator(reply_model=reply_model)

    hint = await evaluator.generate_hints(context)

    assert hint == "「すみません」から始めましょう"
    prompt = reply_model.ainvoke.await_args.args[0][0].content
    assert "Greet the clerk" in prompt


@pytest.mark.asyncio
async def test_generate_hints_uses_recent_messages_only(task_definition):
    context = initialize_context(task_definition, JLPTLevel.N5)
    for i in range(6):
        context = add_message(context, MessageRole.USER, f"message {i}")
    reply_model = chat_model("ヒント")

    await make_evaluator(reply_model=reply_model).generate_hints(context)

    prompt = reply_model.ainvoke.await_args.args[0][0].content
    assert "message 1" not in prompt
    assert "message 2" in prompt
    assert "message 5" in prompt


@pytest.mark.asyncio
async def test_no_hint_once_objectives_are_done(task_definition):
    context = initialize_context(task_definition, JLPTLevel.N5)
    for i in range(3):
        context = complete_objective(context, i)
    reply_model = chat_model()

    assert await make_evaluator(reply_model=reply_model).generate_hints(context) == ""
    reply_model.ainvoke.assert_not_awaited()


# ============================================================================
# Assessment
# ============================================================================


@pytest.mark.asyncio
async def test_generate_assessment(context):
    scoring_model = chat_model("```json\n" + json.dumps(ASSESSMENT_JSON) + "\n```")
    evaluator = make_evaluator(scoring_model=scoring_model)

    result = await evaluator.generate_assessment(context)

    assert (result.task_achievement, result.fluency) == (85, 72)
    assert result.specific_feedback.politeness == "丁寧でした"
    assert result.strengths == ["Polite requests"]
    prompt = scoring_model.ainvoke.await_args.args[0][0].content
    assert "USER: すみません" in prompt
    assert "At the station" in prompt


@pytest.mark.asyncio
async def test_generate_assessment_malformed_json(context):
    evaluator = make_evaluator(scoring_model=chat_model("I think about 80 overall"))

    with pytest.raises(UpstreamEvaluationError, match="malformed JSON"):
        await evaluator.generate_assessment(context)


@pytest.mark.asyncio
async def test_generate_assessment_missing_axis(context):
    incomplete = {k: v for k, v in ASSESSMENT_JSON.items() if k != "politeness"}
    evaluator = make_evaluator(scoring_model=chat_model(json.dumps(incomplete)))

    with pytest.raises(UpstreamEvaluationError, match="incomplete"):
        await evaluator.generate_assessment(context)


# ============================================================================
# Proficiency
# ============================================================================


@pytest.mark.asyncio
async def test_estimate_proficiency_without_history():
    scoring_model = chat_model()

    level = await make_evaluator(scoring_model=scoring_model).estimate_proficiency_level([])

    assert level == JLPTLevel.N5
    scoring_model.ainvoke.assert_not_awaited()


@pytest.mark.asyncio
async def test_estimate_proficiency_level():
    history = [
        (
            AxisScores(
                task_achievement=90, fluency=88, vocabulary_grammar_accuracy=85, politeness=92
            ),
            JLPTLevel.N4,
        ),
    ]
    scoring_model = chat_model(
        '{"estimated_level": "n3", "confidence": 70, "reasoning": "Strong N4"}'
    )

    level = await make_evaluator(scoring_model=scoring_model).estimate_proficiency_level(history)

    assert level == JLPTLevel.N3
    prompt = scoring_model.ainvoke.await_args.args[0][0].content
    assert "Task 1 (N4 level)" in prompt
    assert "Fluency: 88/100" in prompt


@pytest.mark.asyncio
async def test_estimate_proficiency_unknown_level():
    history = [
        (
            AxisScores(
                task_achievement=50, fluency=50, vocabulary_grammar_accuracy=50, politeness=50
            ),
            JLPTLevel.N5,
        ),
    ]
    evaluator = make_evaluator(scoring_model=chat_model('{"estimated_level": "N6"}'))

    with pytest.raises(UpstreamEvaluationError, match="N6"):
        await evaluator.estimate_proficiency_level(history)


# ============================================================================
# Construction
# ============================================================================


def test_models_built_from_settings():
    settings = Settings(
        anthropic_api_key="sk-test",
        evaluator_model="claude-test-model",
        reply_temperature=0.9,
        assessment_temperature=0.1,
        max_tokens=512,
    )

    evaluator = AnthropicEvaluator(settings=settings)

    assert evaluator.reply_model.model == "claude-test-model"
    assert evaluator.reply_model.temperature == 0.9
    assert evaluator.scoring_model.temperature == 0.1
    assert evaluator.scoring_model.max_tokens == 512

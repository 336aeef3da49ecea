"""
Tests for conversation context operations.
"""

import pytest

from kaiwa.errors import ValidationError
from kaiwa.models import ConversationMode, JLPTLevel, MessageRole
from kaiwa.services.conversation import (
    add_hint,
    add_message,
    complete_objective,
    deserialize_context,
    increment_attempt_count,
    initialize_context,
    serialize_context,
)


def test_initialize_context(task_definition, character):
    context = initialize_context(task_definition, "N4", character=character)

    assert context.mode == ConversationMode.TASK_BASED
    assert context.user_proficiency == JLPTLevel.N4
    assert context.current_objective_index == 0
    assert context.completed_objectives == []
    assert context.conversation_history == []
    assert context.hints == []
    assert context.character.name == "田中さん"


def test_add_message_appends_and_does_not_mutate(task_definition, clock):
    context = initialize_context(task_definition, JLPTLevel.N5)

    updated = add_message(context, MessageRole.USER, "こんにちは", clock=clock)

    assert context.conversation_history == []
    assert len(updated.conversation_history) == 1
    message = updated.conversation_history[0]
    assert message.role == MessageRole.USER
    assert message.content == "こんにちは"
    assert message.timestamp == clock.now()


def test_add_message_accepts_role_string(task_definition, clock):
    context = add_message(
        initialize_context(task_definition, JLPTLevel.N5), "assistant", "はい", clock=clock
    )
    assert context.conversation_history[0].role == MessageRole.ASSISTANT


def test_add_message_rejects_unknown_role(task_definition):
    context = initialize_context(task_definition, JLPTLevel.N5)

    with pytest.raises(ValidationError):
        add_message(context, "system", "You are a tutor")


def test_add_hint_keeps_duplicates(task_definition):
    context = initialize_context(task_definition, JLPTLevel.N5)
    context = add_hint(add_hint(context, "Try です"), "Try です")

    assert context.hints == ["Try です", "Try です"]


def test_increment_attempt_count(task_definition):
    context = initialize_context(task_definition, JLPTLevel.N5, task_attempt_count=2)
    assert increment_attempt_count(context).task_attempt_count == 3


def test_serialize_round_trip(task_definition, character, clock):
    context = initialize_context(task_definition, JLPTLevel.N5, character=character)
    context = add_message(context, MessageRole.USER, "すみません", clock=clock)
    clock.advance(seconds=30)
    context = add_message(context, MessageRole.ASSISTANT, "はい、どうぞ", clock=clock)
    context = complete_objective(context, 0)
    context = add_hint(context, "切符 means ticket")

    data = serialize_context(context)
    restored = deserialize_context(task_definition, JLPTLevel.N5, data, character=character)

    assert data["current_objective"] == 1
    assert data["progress"] == 33
    assert restored.completed_objectives == context.completed_objectives
    assert restored.current_objective_index == context.current_objective_index
    assert restored.hints == context.hints
    assert [m.content for m in restored.conversation_history] == ["すみません", "はい、どうぞ"]
    assert restored.conversation_history[1].timestamp == context.conversation_history[1].timestamp


def test_deserialize_empty_snapshot_is_fresh_context(task_definition):
    context = deserialize_context(task_definition, JLPTLevel.N5, {})

    assert context.current_objective_index == 0
    assert context.conversation_history == []


def test_deserialize_none_is_fresh_context(task_definition):
    assert deserialize_context(task_definition, JLPTLevel.N5, None).conversation_history == []


def test_deserialize_rejects_negative_objective(task_definition):
    with pytest.raises(ValidationError):
        deserialize_context(task_definition, JLPTLevel.N5, {"current_objective": -1})


def test_deserialize_rejects_objective_index_past_the_end(task_definition):
    restored = deserialize_context(task_definition, JLPTLevel.N5, {"current_objective": 3})
    assert restored.current_objective_index == 3

    with pytest.raises(ValidationError, match="between 0 and 3"):
        deserialize_context(task_definition, JLPTLevel.N5, {"current_objective": 9})


def test_deserialize_rejects_unknown_completed_objectives(task_definition):
    with pytest.raises(ValidationError, match="not in task task-station"):
        deserialize_context(
            task_definition,
            JLPTLevel.N5,
            {"completed_objectives": ["Greet the clerk", "Order sushi"], "current_objective": 1},
        )


def test_deserialize_rejects_malformed_messages(task_definition):
    with pytest.raises(ValidationError):
        deserialize_context(
            task_definition, JLPTLevel.N5, {"messages": [{"role": "user"}]}
        )


def test_deserialize_rejects_non_mapping(task_definition):
    with pytest.raises(ValidationError):
        deserialize_context(task_definition, JLPTLevel.N5, ["not", "a", "snapshot"])


def test_deserialize_drops_duplicate_completed_objectives(task_definition):
    context = deserialize_context(
        task_definition,
        JLPTLevel.N5,
        {"completed_objectives": ["Greet the clerk", "Greet the clerk"], "current_objective": 1},
    )

    assert context.completed_objectives == ["Greet the clerk"]

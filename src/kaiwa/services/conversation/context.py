"""
Conversation context operations.

Creates, extends, and (de)serializes the per-attempt ConversationContext.
Every function returns a new context; the input is left untouched.
"""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from kaiwa.errors import ValidationError
from kaiwa.models import (
    Character,
    ContextSnapshot,
    ConversationContext,
    JLPTLevel,
    Message,
    MessageRole,
    TaskDefinition,
)
from kaiwa.services.conversation.objectives import get_progress
from kaiwa.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)


def initialize_context(
    task: TaskDefinition,
    proficiency: JLPTLevel | str,
    character: Character | None = None,
    task_attempt_count: int = 0,
) -> ConversationContext:
    """
    Start a fresh task-based conversation.

    Args:
        task: Task being practised
        proficiency: Learner's JLPT level
        character: Optional persona the learner talks to
        task_attempt_count: Prior attempts by this learner on this task

    Returns:
        Context with empty history and hints, positioned on the first objective
    """
    return ConversationContext(
        task=task,
        character=character,
        user_proficiency=JLPTLevel(proficiency),
        task_attempt_count=task_attempt_count,
    )


def add_message(
    context: ConversationContext,
    role: MessageRole | str,
    content: str,
    clock: Clock | None = None,
) -> ConversationContext:
    """
    Append a message to the conversation log.

    No size limit is enforced here; trimming old turns is the caller's concern.

    Raises:
        ValidationError: If role is not user/assistant
    """
    try:
        role = MessageRole(role)
    except ValueError as e:
        raise ValidationError(f"Unknown message role: {role!r}") from e

    message = Message(role=role, content=content, timestamp=(clock or system_clock).now())
    return context.model_copy(
        update={"conversation_history": [*context.conversation_history, message]}
    )


def add_hint(context: ConversationContext, hint: str) -> ConversationContext:
    """Record a hint shown to the learner. Duplicates are kept."""
    return context.model_copy(update={"hints": [*context.hints, hint]})


def increment_attempt_count(context: ConversationContext) -> ConversationContext:
    return context.model_copy(update={"task_attempt_count": context.task_attempt_count + 1})


def serialize_context(context: ConversationContext) -> dict[str, Any]:
    """
    Convert a context into its JSON-safe persisted form.

    The task and character are not included; they are stored on their own
    tables and passed back in on deserialization.
    """
    snapshot = ContextSnapshot(
        messages=context.conversation_history,
        completed_objectives=context.completed_objectives,
        current_objective=context.current_objective_index,
        hints=context.hints,
        progress=get_progress(context),
    )
    return snapshot.model_dump(mode="json")


def deserialize_context(
    task: TaskDefinition,
    proficiency: JLPTLevel | str,
    data: Mapping[str, Any] | None,
    character: Character | None = None,
    task_attempt_count: int = 0,
) -> ConversationContext:
    """
    Restore a context from its persisted form.

    Args:
        task: Task the snapshot belongs to
        proficiency: Learner's JLPT level
        data: Output of serialize_context (an empty mapping means a fresh attempt)
        character: Optional persona
        task_attempt_count: Prior attempts by this learner on this task

    Returns:
        Restored context

    Raises:
        ValidationError: If the payload is malformed, current_objective is out of
            range, or a completed objective is not one of the task's
    """
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValidationError(f"Context snapshot must be a mapping, got {type(data).__name__}")

    try:
        snapshot = ContextSnapshot.model_validate(dict(data))
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed context snapshot: {e}") from e

    objectives = task.learning_objectives
    if not 0 <= snapshot.current_objective <= len(objectives):
        raise ValidationError(
            f"current_objective must be between 0 and {len(objectives)} "
            f"(got {snapshot.current_objective})"
        )

    unknown = [o for o in snapshot.completed_objectives if o not in objectives]
    if unknown:
        raise ValidationError(f"Snapshot completes objectives not in task {task.id}: {unknown}")

    if len(set(snapshot.completed_objectives)) != len(snapshot.completed_objectives):
        logger.warning("Snapshot for task %s has duplicate completed objectives", task.id)

    return ConversationContext(
        task=task,
        character=character,
        user_proficiency=JLPTLevel(proficiency),
        current_objective_index=snapshot.current_objective,
        completed_objectives=list(dict.fromkeys(snapshot.completed_objectives)),
        conversation_history=snapshot.messages,
        hints=snapshot.hints,
        task_attempt_count=task_attempt_count,
    )

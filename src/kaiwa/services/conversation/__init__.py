"""
Conversation services for the engine.

Context state, objective tracking, and heuristic signal detection. All of
these are pure functions over ConversationContext values.
"""

from .context import (
    add_hint,
    add_message,
    deserialize_context,
    increment_attempt_count,
    initialize_context,
    serialize_context,
)
from .objectives import (
    are_all_objectives_completed,
    complete_objective,
    get_current_objective,
    get_progress,
)
from .signals import (
    ConversationSignals,
    ObjectiveSignal,
    analyze_message_completion,
    analyze_objective_progress,
    detect_signals,
    should_offer_hint,
)

__all__ = [
    # Context
    "initialize_context",
    "add_message",
    "add_hint",
    "increment_attempt_count",
    "serialize_context",
    "deserialize_context",
    # Objectives
    "complete_objective",
    "are_all_objectives_completed",
    "get_current_objective",
    "get_progress",
    # Signals
    "should_offer_hint",
    "analyze_objective_progress",
    "analyze_message_completion",
    "detect_signals",
    "ObjectiveSignal",
    "ConversationSignals",
]

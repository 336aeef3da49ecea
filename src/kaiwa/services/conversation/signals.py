"""
Heuristic signal detection.

Fast keyword scan over the learner's recent messages. It only *suggests*
hints and objective completion for UI nudging; scoring never reads it.
"""

from dataclasses import dataclass, field

from kaiwa.models import ConversationContext, Message, MessageRole

# How many trailing messages (both roles) are inspected.
RECENT_MESSAGE_WINDOW = 6

# Minimum history length before a hint may be offered. A single opening
# message never triggers one.
MIN_MESSAGES_FOR_HINT = 2

# Completion confidence: BASE + STEP per distinct phrase, likely above THRESHOLD.
BASE_CONFIDENCE = 10
CONFIDENCE_STEP = 30
COMPLETION_THRESHOLD = 50

HELP_PHRASES: tuple[str, ...] = (
    "help",
    "hint",
    "don't understand",
    "do not understand",
    "i'm stuck",
    "what should i say",
    "わからない",
    "分からない",
    "わかりません",
    "分かりません",
    "助けて",
    "ヒント",
    "教えて",
)

COMPLETION_PHRASES: tuple[str, ...] = (
    "done",
    "finished",
    "completed",
    "okay, understood",
    "ok, understood",
    "yes",
    "できました",
    "完了",
    "終わりました",
    "わかりました",
    "分かりました",
    "はい",
)


@dataclass(frozen=True)
class ObjectiveSignal:
    """Heuristic guess at whether an objective has been met."""

    likely_completed: bool
    confidence: int


@dataclass(frozen=True)
class ConversationSignals:
    """Everything the detector found in the recent conversation."""

    help_requested: bool
    completion_phrases: list[str] = field(default_factory=list)


def _recent_user_messages(context: ConversationContext) -> list[Message]:
    recent = context.conversation_history[-RECENT_MESSAGE_WINDOW:]
    return [m for m in recent if m.role == MessageRole.USER]


def _matching_phrases(text: str, phrases: tuple[str, ...]) -> list[str]:
    lowered = text.lower()
    return [phrase for phrase in phrases if phrase in lowered]


def _signal_for(matches: list[str]) -> ObjectiveSignal:
    confidence = min(BASE_CONFIDENCE + CONFIDENCE_STEP * len(matches), 100)
    return ObjectiveSignal(
        likely_completed=confidence > COMPLETION_THRESHOLD, confidence=confidence
    )


def find_completion_phrases(context: ConversationContext) -> list[str]:
    """Distinct completion phrases used in recent learner messages, in list order."""
    found: dict[str, None] = {}
    for message in _recent_user_messages(context):
        for phrase in _matching_phrases(message.content, COMPLETION_PHRASES):
            found.setdefault(phrase)
    return list(found)


def is_help_request(text: str) -> bool:
    return bool(_matching_phrases(text, HELP_PHRASES))


def should_offer_hint(context: ConversationContext) -> bool:
    """
    True when the learner's latest message asks for help.

    Requires more than one message in the conversation so the opening turn
    never triggers a hint.
    """
    if len(context.conversation_history) < MIN_MESSAGES_FOR_HINT:
        return False

    user_messages = _recent_user_messages(context)
    if not user_messages:
        return False

    return is_help_request(user_messages[-1].content)


def analyze_objective_progress(
    context: ConversationContext, objective_index: int
) -> ObjectiveSignal:
    """
    Estimate whether the objective at ``objective_index`` looks done.

    Confidence starts at BASE_CONFIDENCE and rises by CONFIDENCE_STEP for
    every distinct completion phrase in recent learner messages, capped at 100.
    """
    objectives = context.learning_objectives
    if not 0 <= objective_index < len(objectives):
        return ObjectiveSignal(likely_completed=False, confidence=0)

    if objectives[objective_index] in context.completed_objectives:
        return ObjectiveSignal(likely_completed=True, confidence=100)

    return _signal_for(find_completion_phrases(context))


def analyze_message_completion(text: str) -> ObjectiveSignal:
    """
    Same confidence rule as analyze_objective_progress, scored on a single
    learner message instead of the recent window.
    """
    return _signal_for(list(dict.fromkeys(_matching_phrases(text, COMPLETION_PHRASES))))


def detect_signals(context: ConversationContext) -> ConversationSignals:
    return ConversationSignals(
        help_requested=should_offer_hint(context),
        completion_phrases=find_completion_phrases(context),
    )

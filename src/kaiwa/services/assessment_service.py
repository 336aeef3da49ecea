"""
Assessment engine.

Aggregation and decision logic over four-axis scores: the weighted overall
score, retry recommendation, strength/improvement extraction, deterministic
fallback scores, and averages over stored assessments. The axis scores
themselves normally come from the text-evaluation collaborator
(``kaiwa.llm.evaluator``); nothing in here calls it.
"""

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from kaiwa.errors import ValidationError
from kaiwa.models import (
    ASSESSMENT_SCHEMA_VERSION,
    Assessment,
    AssessmentAxis,
    AxisFeedback,
    AxisScores,
    ConversationContext,
    EvaluationResult,
    ProgressMetrics,
    RetryDecision,
)
from kaiwa.utils.clock import elapsed_minutes
from kaiwa.utils.rounding import round_half_up

logger = logging.getLogger(__name__)

# Weights sum to 1.0
AXIS_WEIGHTS: dict[AssessmentAxis, float] = {
    AssessmentAxis.TASK_ACHIEVEMENT: 0.30,
    AssessmentAxis.FLUENCY: 0.25,
    AssessmentAxis.VOCABULARY_GRAMMAR: 0.25,
    AssessmentAxis.POLITENESS: 0.20,
}

# Retry policy
MASTERY_SCORE = 85
SIGNIFICANT_GAP_SCORE = 70
MAX_RECOMMENDED_RETRIES = 3

# Strength / improvement thresholds (one improvement threshold everywhere)
STRENGTH_THRESHOLD = 85
IMPROVEMENT_THRESHOLD = 70

# Fluency heuristic: an average learner message of this many characters scores 100
FLUENCY_TARGET_LENGTH = 50

# Neutral score used when no deterministic signal exists for an axis
NEUTRAL_SCORE = 50

POLITE_MARKERS: tuple[str, ...] = (
    "です",
    "ます",
    "ございます",
    "お願い",
    "すみません",
    "please",
    "thank you",
)

# Trend needs this many assessments before it can be anything but "stable"
MIN_ASSESSMENTS_FOR_TREND = 4
TREND_DELTA = 5

# ============================================================================
# Scoring
# ============================================================================


def calculate_overall_score(scores: AxisScores) -> float:
    """
    Weighted overall score in floating point (not rounded).

    >>> calculate_overall_score(AxisScores(
    ...     task_achievement=80, fluency=70, vocabulary_grammar_accuracy=60, politeness=50))
    66.5
    """
    # Ten places only strips float noise (66.50000000000001), not a real rounding
    return round(sum(scores.get(axis) * weight for axis, weight in AXIS_WEIGHTS.items()), 10)


def validate_axis_scores(evaluation: EvaluationResult | Mapping[str, Any]) -> AxisScores:
    """
    Check that all four axis scores are integers in [0, 100].

    Raises:
        ValidationError: If any score is missing or out of range
    """
    raw = evaluation.model_dump() if isinstance(evaluation, EvaluationResult) else dict(evaluation)
    try:
        return AxisScores.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Assessment scores must be between 0 and 100: {e}") from e


def evaluate_task_achievement(context: ConversationContext) -> float:
    """
    Objective completion rate as a percentage.

    Deterministic cross-check for the LLM's task achievement score. A task
    without objectives scores 100.
    """
    total = len(context.learning_objectives)
    if total == 0:
        return 100.0
    return min(100 * len(context.completed_objectives) / total, 100.0)


def evaluate_fluency(context: ConversationContext) -> float:
    """
    Rough fluency from average learner message length.

    Returns 0 when the learner has not said anything.
    """
    user_messages = context.user_messages
    if not user_messages:
        return 0.0

    average_length = sum(len(m.content) for m in user_messages) / len(user_messages)
    return min(average_length / FLUENCY_TARGET_LENGTH * 100, 100.0)


def evaluate_politeness(context: ConversationContext) -> float:
    """Share of learner messages using polite forms, mapped onto [50, 100]."""
    user_messages = context.user_messages
    if not user_messages:
        return 0.0

    polite = sum(
        1 for m in user_messages if any(marker in m.content.lower() for marker in POLITE_MARKERS)
    )
    return min(NEUTRAL_SCORE + NEUTRAL_SCORE * polite / len(user_messages), 100.0)


def build_fallback_scores(context: ConversationContext) -> AxisScores:
    """Deterministic scores for when the evaluator is unavailable."""
    return AxisScores(
        task_achievement=round_half_up(evaluate_task_achievement(context)),
        fluency=round_half_up(evaluate_fluency(context)),
        vocabulary_grammar_accuracy=NEUTRAL_SCORE if context.user_messages else 0,
        politeness=round_half_up(evaluate_politeness(context)),
    )


# ============================================================================
# Decisions
# ============================================================================


def recommend_retry(
    overall_score: float, retry_count: int, focus_areas: list[str] | None = None
) -> RetryDecision:
    """
    Decide whether another attempt is worthwhile.

    Recommended while the score is below mastery and the learner has not
    already retried MAX_RECOMMENDED_RETRIES times.
    """
    if overall_score < MASTERY_SCORE and retry_count < MAX_RECOMMENDED_RETRIES:
        if overall_score < SIGNIFICANT_GAP_SCORE:
            reasoning = (
                "Significant room for improvement. Retry recommended to master the material."
            )
        else:
            reasoning = "Good progress! One more attempt could help you achieve mastery."
        return RetryDecision(recommended=True, reasoning=reasoning, focus_areas=focus_areas or [])

    if overall_score >= MASTERY_SCORE:
        reasoning = "Excellent performance! You've mastered this task."
    else:
        reasoning = "You've practiced this task multiple times. Consider trying a different task."
    return RetryDecision(recommended=False, reasoning=reasoning)


def extract_strengths(scores: AxisScores) -> list[str]:
    return [axis.label for axis in AssessmentAxis if scores.get(axis) >= STRENGTH_THRESHOLD]


def extract_improvement_areas(scores: AxisScores) -> list[str]:
    return [axis.label for axis in AssessmentAxis if scores.get(axis) < IMPROVEMENT_THRESHOLD]


FEEDBACK_TEMPLATES: dict[AssessmentAxis, dict[str, str]] = {
    AssessmentAxis.TASK_ACHIEVEMENT: {
        "excellent": "Excellent task completion! You achieved all objectives with high quality responses.",
        "good": "Good job completing the task objectives. Most goals were achieved effectively.",
        "moderate": "You completed some objectives, but there is room for improvement in thoroughness.",
        "needs_improvement": "Task objectives were partially completed. Focus on addressing all required points.",
    },
    AssessmentAxis.FLUENCY: {
        "excellent": "Your Japanese flows naturally and smoothly. Excellent conversational ability!",
        "good": "Good fluency overall. Your responses are generally natural with minor hesitations.",
        "moderate": "Moderate fluency. Work on connecting ideas more smoothly and reducing pauses.",
        "needs_improvement": "Focus on building more natural conversation flow and sentence connections.",
    },
    AssessmentAxis.VOCABULARY_GRAMMAR: {
        "excellent": "Excellent vocabulary range and grammar accuracy! Very few errors.",
        "good": "Good use of vocabulary and grammar with only minor mistakes.",
        "moderate": "Adequate vocabulary but some grammar errors. Review particles and verb forms.",
        "needs_improvement": "Focus on improving grammar accuracy and expanding vocabulary range.",
    },
    AssessmentAxis.POLITENESS: {
        "excellent": "Perfect use of polite language and appropriate formality levels!",
        "good": "Good politeness and appropriate formality in most situations.",
        "moderate": "Adequate politeness but inconsistent formality levels. Review keigo usage.",
        "needs_improvement": "Work on using more appropriate polite expressions and honorifics.",
    },
}


def feedback_for_score(axis: AssessmentAxis, score: float) -> str:
    if score >= 90:
        band = "excellent"
    elif score >= 70:
        band = "good"
    elif score >= 50:
        band = "moderate"
    else:
        band = "needs_improvement"
    return FEEDBACK_TEMPLATES[axis][band]


def template_feedback(scores: AxisScores) -> AxisFeedback:
    """Per-axis feedback text derived from the scores alone."""
    return AxisFeedback(
        task_achievement=feedback_for_score(
            AssessmentAxis.TASK_ACHIEVEMENT, scores.task_achievement
        ),
        fluency=feedback_for_score(AssessmentAxis.FLUENCY, scores.fluency),
        vocabulary_grammar=feedback_for_score(
            AssessmentAxis.VOCABULARY_GRAMMAR, scores.vocabulary_grammar_accuracy
        ),
        politeness=feedback_for_score(AssessmentAxis.POLITENESS, scores.politeness),
    )


def overall_feedback(overall_score: float) -> str:
    if overall_score >= 90:
        return "Outstanding performance! You demonstrated excellent Japanese skills across all areas."
    if overall_score >= 75:
        return "Great job! Keep refining the areas where you scored below 80."
    if overall_score >= 60:
        return "Good effort! Focus on your weaker areas while maintaining your strengths."
    return "Keep practicing! Review the task objectives and try similar tasks to build confidence."


# ============================================================================
# Assembly
# ============================================================================


def build_assessment(
    context: ConversationContext,
    evaluation: EvaluationResult,
    retry_count: int = 0,
    started_at: datetime | None = None,
    ended_at: datetime | None = None,
) -> Assessment:
    """
    Combine evaluator output with the deterministic decision logic.

    Args:
        context: Conversation being assessed
        evaluation: Four raw scores and feedback text
        retry_count: Prior attempts on this task (drives the retry decision)
        started_at: Attempt start, for time-to-complete
        ended_at: Attempt end (also stamped as assessed_at)

    Raises:
        ValidationError: If any score is outside [0, 100]
    """
    scores = validate_axis_scores(evaluation)
    overall = calculate_overall_score(scores)

    improvement_areas = evaluation.areas_for_improvement or extract_improvement_areas(scores)
    strengths = evaluation.strengths or extract_strengths(scores)
    decision = recommend_retry(overall, retry_count, focus_areas=improvement_areas)

    fallback_feedback = template_feedback(scores)
    feedback = AxisFeedback(
        **{
            name: getattr(evaluation.specific_feedback, name) or getattr(fallback_feedback, name)
            for name in AxisFeedback.model_fields
        }
    )

    time_to_complete = None
    if started_at is not None and ended_at is not None:
        time_to_complete = elapsed_minutes(started_at, ended_at)

    return Assessment(
        **scores.model_dump(),
        overall_score=overall,
        specific_feedback=feedback,
        overall_feedback=evaluation.overall_feedback or overall_feedback(overall),
        strengths=strengths,
        improvement_areas=improvement_areas,
        retry_recommendation=decision.recommended,
        retry_reasoning=decision.reasoning,
        objective_completion={
            objective: objective in context.completed_objectives
            for objective in context.learning_objectives
        },
        time_to_complete_minutes=time_to_complete,
        assessed_at=ended_at,
    )


# ============================================================================
# Stored assessments
# ============================================================================


def _upgrade_v1(payload: dict[str, Any]) -> dict[str, Any]:
    """Map the legacy flat camelCase blob onto the current schema."""
    return {
        "schema_version": ASSESSMENT_SCHEMA_VERSION,
        "task_achievement": payload.get("taskAchievement"),
        "fluency": payload.get("fluency"),
        "vocabulary_grammar_accuracy": payload.get("vocabularyGrammarAccuracy"),
        "politeness": payload.get("politeness"),
        "overall_score": payload.get("overallScore"),
        "overall_feedback": payload.get("feedbackText") or "",
    }


def parse_stored_assessment(raw: str | Mapping[str, Any] | None) -> Assessment:
    """
    Parse an assessment as stored on an attempt, upgrading older versions.

    Raises:
        ValidationError: If the payload is empty, not JSON, or not an assessment
    """
    if raw is None:
        raise ValidationError("No assessment stored")

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Stored assessment is not valid JSON: {e}") from e

    if not isinstance(raw, Mapping):
        raise ValidationError(f"Stored assessment must be an object, got {type(raw).__name__}")

    payload = dict(raw)
    version = payload.get("schema_version", 1)
    if version == 1:
        payload = _upgrade_v1(payload)
    elif version != ASSESSMENT_SCHEMA_VERSION:
        raise ValidationError(f"Unsupported assessment schema version: {version!r}")

    try:
        return Assessment.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed stored assessment: {e}") from e


def parse_valid_assessments(raws: Iterable[Any]) -> list[Assessment]:
    """Parse stored assessments, skipping any that cannot be read."""
    assessments = []
    for raw in raws:
        try:
            assessments.append(parse_stored_assessment(raw))
        except ValidationError as e:
            logger.debug("Skipping unreadable stored assessment: %s", e)
    return assessments


def calculate_task_average(raws: Iterable[Any]) -> float | None:
    """
    Mean overall score across stored assessments.

    Best effort: unreadable records are skipped, never raised. Returns None
    when no record is readable.
    """
    assessments = parse_valid_assessments(raws)
    if not assessments:
        return None
    return sum(a.overall_score for a in assessments) / len(assessments)


def calculate_progress_metrics(assessments: list[Assessment]) -> ProgressMetrics:
    """
    Per-axis averages and an improvement trend across assessments (oldest first).

    The trend compares the mean overall score of the second half with the first.
    """
    if not assessments:
        return ProgressMetrics()

    count = len(assessments)

    def mean(values: Iterable[float]) -> float:
        return sum(values) / count

    trend = "stable"
    if count >= MIN_ASSESSMENTS_FOR_TREND:
        midpoint = count // 2
        first = assessments[:midpoint]
        second = assessments[midpoint:]
        difference = sum(a.overall_score for a in second) / len(second) - sum(
            a.overall_score for a in first
        ) / len(first)
        if difference > TREND_DELTA:
            trend = "improving"
        elif difference < -TREND_DELTA:
            trend = "declining"

    return ProgressMetrics(
        average_task_achievement=mean(a.task_achievement for a in assessments),
        average_fluency=mean(a.fluency for a in assessments),
        average_vocabulary_grammar_accuracy=mean(
            a.vocabulary_grammar_accuracy for a in assessments
        ),
        average_politeness=mean(a.politeness for a in assessments),
        average_overall=mean(a.overall_score for a in assessments),
        trend=trend,
    )

"""
Task recommendation scorer.

Ranks candidate tasks for a learner with additive bonuses. Scoring and
ranking are pure; ``get_recommendations`` gathers the learner's history and
the candidate set from the database.

Alongside the ranked list there are fixed-relevance shortlists (similar,
next level, skill focus, daily).
"""

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from kaiwa.errors import LearnerNotFoundError, TaskNotFoundError, ValidationError
from kaiwa.models import (
    AssessmentAxis,
    JLPTLevel,
    LearnerModel,
    LearnerProfile,
    RecommendationInsights,
    Recommendations,
    ScoredTask,
    TaskAttemptModel,
    TaskDefinition,
    TaskModel,
)
from kaiwa.services.assessment_service import parse_stored_assessment
from kaiwa.settings import get_settings
from kaiwa.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

PREFERRED_CATEGORY_BONUS = 30
RECOMMENDED_LEVEL_BONUS = 25
CURRENT_LEVEL_BONUS = 15
POPULARITY_BONUS = 15
HIGH_RATING_BONUS = 20
NEW_CATEGORY_BONUS = 10
FOCUSED_DURATION_BONUS = 10

POPULARITY_THRESHOLD = 10
HIGH_RATING_THRESHOLD = 75
FOCUSED_DURATION_RANGE = (10, 30)

# Average objective completion above this suggests the next level up
LEVEL_UP_COMPLETION_RATE = 80

# Fixed relevance and size of each shortlist
SIMILAR_SCORE = 80
SIMILAR_LIMIT = 3
PROGRESSIVE_SCORE = 85
PROGRESSIVE_LIMIT = 3
SKILL_FOCUS_SCORE = 90
SKILL_FOCUS_LIMIT = 5
DAILY_SCORE = 75

# Categories whose scenarios exercise each axis
SKILL_FOCUS_CATEGORIES: dict[AssessmentAxis, tuple[str, ...]] = {
    AssessmentAxis.TASK_ACHIEVEMENT: ("restaurant", "shopping", "travel"),
    AssessmentAxis.FLUENCY: ("daily life", "social", "business"),
    AssessmentAxis.VOCABULARY_GRAMMAR: ("education", "business", "healthcare"),
    AssessmentAxis.POLITENESS: ("business", "healthcare", "social"),
}


def score_task(task: TaskDefinition, profile: LearnerProfile) -> ScoredTask:
    """Total the independent bonuses for one candidate."""
    score = 0
    reasons: list[str] = []

    if task.category in profile.preferred_categories:
        score += PREFERRED_CATEGORY_BONUS
        reasons.append(f"Matches your preferred category: {task.category}")

    if task.difficulty == profile.recommended_level:
        score += RECOMMENDED_LEVEL_BONUS
        reasons.append(f"Recommended difficulty level: {task.difficulty.value}")
    elif task.difficulty == profile.current_level:
        score += CURRENT_LEVEL_BONUS
        reasons.append(f"Matches your current level: {task.difficulty.value}")

    if task.usage_count > POPULARITY_THRESHOLD:
        score += POPULARITY_BONUS
        reasons.append("Popular task with many learners")

    if task.average_score is not None and task.average_score > HIGH_RATING_THRESHOLD:
        score += HIGH_RATING_BONUS
        reasons.append("Highly rated by other learners")

    if task.category not in profile.attempted_categories:
        score += NEW_CATEGORY_BONUS
        reasons.append("New category to explore")

    low, high = FOCUSED_DURATION_RANGE
    if low <= task.estimated_duration <= high:
        score += FOCUSED_DURATION_BONUS
        reasons.append("Good duration for focused practice")

    return ScoredTask(task=task, score=score, reasons=reasons)


def rank_tasks(candidates: Iterable[TaskDefinition], profile: LearnerProfile) -> list[ScoredTask]:
    """
    Score and sort candidates, best first.

    Equal scores are ordered by task id, so the ranking does not depend on
    the order candidates were fetched in.
    """
    scored = [score_task(task, profile) for task in candidates]
    return sorted(scored, key=lambda s: (-s.score, s.task.id))


def completion_rate(raw_assessment: Any) -> float:
    """
    Percentage of objectives achieved according to a stored assessment.

    Unreadable assessments count as 0; an assessment without objectives as 100.
    """
    try:
        assessment = parse_stored_assessment(raw_assessment)
    except ValidationError as e:
        logger.debug("Unreadable assessment in completion history: %s", e)
        return 0.0

    outcomes = assessment.objective_completion
    if not outcomes:
        return 100.0
    return 100 * sum(outcomes.values()) / len(outcomes)


def recommended_level(current: JLPTLevel, average_completion_rate: float) -> JLPTLevel:
    if average_completion_rate > LEVEL_UP_COMPLETION_RATE:
        return current.next_level()
    return current


def build_learner_profile(
    learner_id: str,
    proficiency: JLPTLevel | str,
    preferred_categories: Sequence[str] = (),
    completed_task_ids: Sequence[str] = (),
    recent_attempts: Sequence[tuple[str, Any]] = (),
) -> LearnerProfile:
    """
    Build the scorer's view of a learner.

    Args:
        learner_id: Learner ID
        proficiency: Current JLPT level
        preferred_categories: Categories the learner asked for
        completed_task_ids: Tasks the learner has completed
        recent_attempts: (task category, stored assessment) for recent
            completed attempts, newest first
    """
    current = JLPTLevel(proficiency)
    rates = [completion_rate(raw) for _, raw in recent_attempts]
    average = sum(rates) / len(rates) if rates else 0.0

    return LearnerProfile(
        learner_id=learner_id,
        current_level=current,
        recommended_level=recommended_level(current, average),
        preferred_categories=list(preferred_categories),
        completed_task_ids=list(completed_task_ids),
        attempted_categories=list(dict.fromkeys(category for category, _ in recent_attempts)),
        average_completion_rate=average,
    )


def build_insights(profile: LearnerProfile) -> RecommendationInsights:
    rate = profile.average_completion_rate

    if rate > LEVEL_UP_COMPLETION_RATE:
        suggestion = f"Great progress! Ready to try {profile.recommended_level.value} level tasks."
    elif rate > 60:
        suggestion = "You're making steady progress. Keep practicing at your current level."
    else:
        suggestion = "Focus on mastering your current level before advancing."

    if rate > 75:
        trend = "Excellent"
    elif rate > 60:
        trend = "Good"
    elif rate > 40:
        trend = "Fair"
    else:
        trend = "Needs Improvement"

    return RecommendationInsights(progress_suggestion=suggestion, completion_trend=trend)


async def _get_learner(session: AsyncSession, learner_id: str) -> LearnerModel:
    learner = await session.get(LearnerModel, learner_id)
    if not learner:
        raise LearnerNotFoundError(f"Learner {learner_id} not found")
    return learner


def _open_tasks(exclude_task_ids: Sequence[str] = ()):
    """Active tasks, minus the given ids."""
    query = select(TaskModel).where(TaskModel.is_active.is_(True))
    if exclude_task_ids:
        query = query.where(TaskModel.id.not_in(list(exclude_task_ids)))
    return query


async def _shortlist(
    session: AsyncSession,
    query,
    score: int,
    reasons_for: Callable[[TaskDefinition], list[str]],
) -> list[ScoredTask]:
    result = await session.execute(query)
    tasks = [TaskDefinition.model_validate(t) for t in result.scalars().all()]
    return [ScoredTask(task=task, score=score, reasons=reasons_for(task)) for task in tasks]


async def get_recommendations(
    session: AsyncSession,
    learner_id: str,
    limit: int | None = None,
    category: str | None = None,
) -> Recommendations:
    """
    Recommend tasks for a learner.

    Candidates are active tasks the learner has not completed, at the
    learner's current level or the recommended level.

    Args:
        session: Database session
        learner_id: Learner to recommend for
        limit: Maximum recommendations (defaults to settings)
        category: Only recommend tasks in this category

    Raises:
        LearnerNotFoundError: If learner does not exist
    """
    settings = get_settings()
    limit = limit or settings.recommendation_limit

    learner = await _get_learner(session, learner_id)

    result = await session.execute(
        select(TaskAttemptModel)
        .where(
            TaskAttemptModel.learner_id == learner_id,
            TaskAttemptModel.is_completed.is_(True),
        )
        .options(selectinload(TaskAttemptModel.task))
        .order_by(TaskAttemptModel.end_time.desc())
        .limit(settings.recommendation_history_window)
    )
    recent = result.scalars().all()

    profile = build_learner_profile(
        learner_id=learner.id,
        proficiency=learner.proficiency,
        preferred_categories=learner.preferred_categories or [],
        completed_task_ids=learner.completed_tasks or [],
        recent_attempts=[(a.task.category, a.assessment) for a in recent],
    )

    levels = {profile.current_level.value, profile.recommended_level.value}
    query = _open_tasks(profile.completed_task_ids).where(TaskModel.difficulty.in_(levels))
    if category:
        query = query.where(TaskModel.category == category)

    result = await session.execute(query)
    candidates = [TaskDefinition.model_validate(t) for t in result.scalars().all()]

    ranked = rank_tasks(candidates, profile)[:limit]
    logger.debug(
        "Ranked %d candidates for learner %s (recommended level %s)",
        len(candidates),
        learner_id,
        profile.recommended_level.value,
    )

    return Recommendations(
        recommendations=ranked,
        profile=profile,
        insights=build_insights(profile),
    )


async def get_similar_tasks(
    session: AsyncSession,
    task_id: str,
    limit: int = SIMILAR_LIMIT,
    exclude_task_ids: Sequence[str] = (),
) -> list[ScoredTask]:
    """
    Other active tasks in the same category and at the same level.

    Raises:
        TaskNotFoundError: If task does not exist
    """
    task = await session.get(TaskModel, task_id)
    if not task:
        raise TaskNotFoundError(f"Task {task_id} not found")

    query = (
        _open_tasks([task_id, *exclude_task_ids])
        .where(TaskModel.category == task.category, TaskModel.difficulty == task.difficulty)
        .order_by(TaskModel.id)
        .limit(limit)
    )
    return await _shortlist(
        session,
        query,
        SIMILAR_SCORE,
        lambda t: [
            f"Similar to your recent task, this provides additional practice in {t.category}."
        ],
    )


async def get_progressive_tasks(
    session: AsyncSession, learner_id: str, limit: int = PROGRESSIVE_LIMIT
) -> list[ScoredTask]:
    """
    Shortest uncompleted tasks one level above the learner's.

    Empty for N1 learners.

    Raises:
        LearnerNotFoundError: If learner does not exist
    """
    learner = await _get_learner(session, learner_id)
    current = JLPTLevel(learner.proficiency)
    next_level = current.next_level()
    if next_level == current:
        return []

    query = (
        _open_tasks(learner.completed_tasks or [])
        .where(TaskModel.difficulty == next_level.value)
        .order_by(TaskModel.estimated_duration, TaskModel.id)
        .limit(limit)
    )
    reason = (
        f"Ready to challenge yourself? This {next_level.value} task will help you "
        "progress to the next level."
    )
    return await _shortlist(session, query, PROGRESSIVE_SCORE, lambda t: [reason])


def skill_focus_axis(skill: AssessmentAxis | str) -> AssessmentAxis | None:
    """Resolve an axis from its value ("politeness") or label ("Vocabulary & Grammar")."""
    if isinstance(skill, AssessmentAxis):
        return skill
    wanted = skill.strip().lower()
    for axis in AssessmentAxis:
        if wanted in (axis.value, axis.label.lower()):
            return axis
    return None


async def get_tasks_by_skill_focus(
    session: AsyncSession,
    learner_id: str,
    skill: AssessmentAxis | str,
    limit: int = SKILL_FOCUS_LIMIT,
) -> list[ScoredTask]:
    """
    Uncompleted tasks at the learner's level whose categories train ``skill``.

    Unknown skills fall back to the task achievement categories.

    Raises:
        LearnerNotFoundError: If learner does not exist
    """
    learner = await _get_learner(session, learner_id)
    axis = skill_focus_axis(skill)
    if axis is None:
        logger.debug("Unknown skill focus %r, using task achievement categories", skill)
        axis = AssessmentAxis.TASK_ACHIEVEMENT

    query = (
        _open_tasks(learner.completed_tasks or [])
        .where(
            func.lower(TaskModel.category).in_(SKILL_FOCUS_CATEGORIES[axis]),
            TaskModel.difficulty == learner.proficiency,
        )
        .order_by(TaskModel.id)
        .limit(limit)
    )
    return await _shortlist(
        session,
        query,
        SKILL_FOCUS_SCORE,
        lambda t: [f"Focused practice for improving {axis.label}."],
    )


async def get_daily_recommendation(
    session: AsyncSession, learner_id: str, clock: Clock | None = None
) -> ScoredTask | None:
    """
    One uncompleted task at the learner's level, fixed for the whole (UTC) day.

    The pick is the date's character-code sum modulo the number of
    candidates, taken in id order.

    Raises:
        LearnerNotFoundError: If learner does not exist
    """
    clock = clock or system_clock
    learner = await _get_learner(session, learner_id)

    query = (
        _open_tasks(learner.completed_tasks or [])
        .where(TaskModel.difficulty == learner.proficiency)
        .order_by(TaskModel.id)
    )
    candidates = await _shortlist(
        session,
        query,
        DAILY_SCORE,
        lambda t: ["Today's recommended task to keep your Japanese fresh!"],
    )
    if not candidates:
        return None

    seed = sum(ord(c) for c in clock.now().date().isoformat())
    return candidates[seed % len(candidates)]

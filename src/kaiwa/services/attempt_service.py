"""
Attempt lifecycle service.

State machine for a learner's attempt at a task:

    start -> Active -> (readiness check) -> Completed -> optional Retry

Completion is terminal and happens exactly once per attempt. It is guarded
by a conditional UPDATE, so of two racing completions only one can win. Retry
numbering counts every prior attempt for the learner+task pair, read under a
per-pair lock in the same transaction as the insert.
"""

import asyncio
import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from kaiwa.errors import (
    AlreadyCompletedError,
    AttemptNotFoundError,
    InvalidStateError,
    LearnerNotFoundError,
    TaskNotFoundError,
    UpstreamEvaluationError,
    ValidationError,
)
from kaiwa.llm.evaluator import ConversationEvaluator
from kaiwa.models import (
    Assessment,
    AttemptStart,
    Character,
    CompletionResult,
    ConversationContext,
    EvaluationResult,
    JLPTLevel,
    LearnerModel,
    MessageResult,
    MessageRole,
    ReadinessReport,
    RetryContext,
    RetryResult,
    RetryStatistics,
    TaskAttempt,
    TaskAttemptModel,
    TaskDefinition,
    TaskModel,
)
from kaiwa.services.assessment_service import (
    build_assessment,
    build_fallback_scores,
    calculate_progress_metrics,
    calculate_task_average,
    parse_stored_assessment,
    parse_valid_assessments,
    recommend_retry,
)
from kaiwa.services.recommendation_service import get_similar_tasks
from kaiwa.services.conversation import (
    add_hint,
    add_message,
    analyze_message_completion,
    complete_objective,
    deserialize_context,
    detect_signals,
    get_progress,
    initialize_context,
    serialize_context,
)
from kaiwa.utils.clock import Clock, elapsed_minutes, ensure_utc, system_clock
from kaiwa.utils.ids import PREFIX_ATTEMPT, generate_entity_id
from kaiwa.utils.rounding import round_half_up

logger = logging.getLogger(__name__)

# Readiness thresholds
MIN_MESSAGES_FOR_COMPLETION = 5
MIN_DURATION_RATIO = 0.5

# A retry aims this many points above the previous score
IMPROVEMENT_TARGET_STEP = 15

# Only the first few improvement areas are carried into a retry
MAX_RETRY_FOCUS_AREAS = 3


class AttemptLocks:
    """
    One asyncio.Lock per (learner, task) pair.

    Serializes attempt creation within this process so two concurrent
    starts or retries cannot read the same prior-attempt count.
    """

    def __init__(self):
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def for_pair(self, learner_id: str, task_id: str) -> asyncio.Lock:
        key = (learner_id, task_id)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]


attempt_locks = AttemptLocks()


# ============================================================================
# Helpers
# ============================================================================


def _to_attempt(model: TaskAttemptModel) -> TaskAttempt:
    attempt = TaskAttempt.model_validate(model)
    attempt.start_time = ensure_utc(attempt.start_time)
    if attempt.end_time is not None:
        attempt.end_time = ensure_utc(attempt.end_time)
    return attempt


async def _load_attempt(session: AsyncSession, attempt_id: str) -> TaskAttemptModel:
    result = await session.execute(
        select(TaskAttemptModel)
        .where(TaskAttemptModel.id == attempt_id)
        .options(
            selectinload(TaskAttemptModel.task).selectinload(TaskModel.character),
            selectinload(TaskAttemptModel.learner),
        )
        .execution_options(populate_existing=True)
    )
    attempt = result.scalar_one_or_none()
    if not attempt:
        raise AttemptNotFoundError(f"Task attempt {attempt_id} not found")
    return attempt


def _context_for(attempt: TaskAttemptModel) -> ConversationContext:
    """Rebuild the live conversation context stored on an attempt."""
    task = attempt.task
    return deserialize_context(
        task=TaskDefinition.model_validate(task),
        proficiency=JLPTLevel(attempt.learner.proficiency),
        data=attempt.conversation,
        character=Character.model_validate(task.character) if task.character else None,
        task_attempt_count=attempt.retry_count,
    )


async def _count_attempts(session: AsyncSession, learner_id: str, task_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(TaskAttemptModel)
        .where(TaskAttemptModel.learner_id == learner_id, TaskAttemptModel.task_id == task_id)
    )
    return result.scalar_one()


async def get_attempt(session: AsyncSession, attempt_id: str) -> TaskAttempt:
    """
    Retrieve an attempt by ID.

    Raises:
        AttemptNotFoundError: If attempt does not exist
    """
    return _to_attempt(await _load_attempt(session, attempt_id))


async def get_attempt_context(session: AsyncSession, attempt_id: str) -> ConversationContext:
    """
    Retrieve the live conversation context of an attempt.

    Raises:
        AttemptNotFoundError: If attempt does not exist
        ValidationError: If the stored snapshot is malformed
    """
    return _context_for(await _load_attempt(session, attempt_id))


async def find_attempts_for(
    session: AsyncSession, learner_id: str, task_id: str
) -> list[TaskAttempt]:
    """All attempts by a learner on a task, oldest first."""
    result = await session.execute(
        select(TaskAttemptModel)
        .where(TaskAttemptModel.learner_id == learner_id, TaskAttemptModel.task_id == task_id)
        .order_by(TaskAttemptModel.start_time, TaskAttemptModel.retry_count)
    )
    return [_to_attempt(a) for a in result.scalars().all()]


# ============================================================================
# Start / converse
# ============================================================================


async def start_or_resume_attempt(
    session: AsyncSession,
    learner_id: str,
    task_id: str,
    clock: Clock | None = None,
) -> AttemptStart:
    """
    Resume the learner's open attempt on a task, or start a new one.

    A new attempt's retry_count is the number of attempts the learner already
    made on this task. Starting bumps the task's usage count and sets it as
    the learner's current task.

    Args:
        session: Database session
        learner_id: Learner starting the task
        task_id: Task to attempt
        clock: Time source (defaults to wall clock)

    Returns:
        The attempt, with is_existing=True when an open one was resumed

    Raises:
        LearnerNotFoundError: If learner does not exist
        TaskNotFoundError: If task does not exist
        InvalidStateError: If the task is not active
    """
    clock = clock or system_clock

    learner = await session.get(LearnerModel, learner_id)
    if not learner:
        raise LearnerNotFoundError(f"Learner {learner_id} not found")

    result = await session.execute(
        select(TaskModel).where(TaskModel.id == task_id).options(selectinload(TaskModel.character))
    )
    task = result.scalar_one_or_none()
    if not task:
        raise TaskNotFoundError(f"Task {task_id} not found")
    if not task.is_active:
        raise InvalidStateError(f"Task {task_id} is not active")

    async with attempt_locks.for_pair(learner_id, task_id):
        result = await session.execute(
            select(TaskAttemptModel)
            .where(
                TaskAttemptModel.learner_id == learner_id,
                TaskAttemptModel.task_id == task_id,
                TaskAttemptModel.is_completed.is_(False),
            )
            .order_by(TaskAttemptModel.start_time.desc())
            .limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing:
            logger.info("Resuming attempt %s for learner %s", existing.id, learner_id)
            return AttemptStart(attempt=_to_attempt(existing), is_existing=True)

        prior_attempts = await _count_attempts(session, learner_id, task_id)
        context = initialize_context(
            TaskDefinition.model_validate(task),
            JLPTLevel(learner.proficiency),
            character=Character.model_validate(task.character) if task.character else None,
            task_attempt_count=prior_attempts,
        )

        attempt = TaskAttemptModel(
            id=generate_entity_id(PREFIX_ATTEMPT),
            learner_id=learner_id,
            task_id=task_id,
            start_time=clock.now(),
            retry_count=prior_attempts,
            conversation=serialize_context(context),
        )
        session.add(attempt)

        task.usage_count = (task.usage_count or 0) + 1
        learner.current_task_id = task_id

        await session.commit()
        await session.refresh(attempt)

    logger.info("Started attempt %s on task %s for learner %s", attempt.id, task_id, learner_id)
    return AttemptStart(attempt=_to_attempt(attempt), is_existing=False)


async def post_message(
    session: AsyncSession,
    attempt_id: str,
    content: str,
    evaluator: ConversationEvaluator,
    clock: Clock | None = None,
) -> MessageResult:
    """
    Record one learner turn and the character's reply.

    The user message is appended, the signal detector runs over the recent
    conversation, the current objective is marked complete when this
    message signals it, and the evaluator produces the reply (plus a hint
    when the learner asked for help). Nothing is persisted if the evaluator fails.

    Raises:
        AttemptNotFoundError: If attempt does not exist
        AlreadyCompletedError: If the attempt is completed
        ValidationError: If the message is blank
        UpstreamEvaluationError: If the evaluator fails
    """
    clock = clock or system_clock

    text = content.strip() if content else ""
    if not text:
        raise ValidationError("Message is required")

    attempt = await _load_attempt(session, attempt_id)
    if attempt.is_completed:
        raise AlreadyCompletedError(f"Task attempt {attempt_id} already completed")

    context = add_message(_context_for(attempt), MessageRole.USER, text, clock=clock)

    signals = detect_signals(context)
    completed_objective = None
    index = context.current_objective_index
    # Scored on this turn alone
    if analyze_message_completion(text).likely_completed:
        updated = complete_objective(context, index)
        if updated is not context:
            completed_objective = context.learning_objectives[index]
            context = updated

    reply = await evaluator.generate_reply(context)
    context = add_message(context, MessageRole.ASSISTANT, reply, clock=clock)

    hint = None
    if signals.help_requested:
        hint = await evaluator.generate_hints(context) or None
        if hint:
            context = add_hint(context, hint)

    attempt.conversation = serialize_context(context)
    await session.commit()
    await session.refresh(attempt)

    return MessageResult(
        attempt=_to_attempt(attempt),
        reply=reply,
        hint=hint,
        help_requested=signals.help_requested,
        completed_objective=completed_objective,
        progress=get_progress(context),
    )


# ============================================================================
# Readiness / completion
# ============================================================================


def evaluate_readiness(
    context: ConversationContext, start_time: datetime, now: datetime
) -> ReadinessReport:
    """
    Decide whether an attempt may be completed.

    Ready when there are at least MIN_MESSAGES_FOR_COMPLETION messages, every
    objective is done (trivially true with none), and at least half the
    task's estimated duration has elapsed.
    """
    message_count = len(context.conversation_history)
    total_objectives = len(context.learning_objectives)
    completed = len(context.completed_objectives)
    minimum_minutes = round_half_up(context.task.estimated_duration * MIN_DURATION_RATIO)
    elapsed = elapsed_minutes(start_time, now)

    has_messages = message_count >= MIN_MESSAGES_FOR_COMPLETION
    objectives_complete = total_objectives == 0 or completed >= total_objectives
    has_minimum_duration = elapsed >= minimum_minutes

    return ReadinessReport(
        is_ready=has_messages and objectives_complete and has_minimum_duration,
        has_messages=has_messages,
        objectives_complete=objectives_complete,
        has_minimum_duration=has_minimum_duration,
        message_count=message_count,
        required_messages=MIN_MESSAGES_FOR_COMPLETION,
        completed_objectives=completed,
        total_objectives=total_objectives,
        elapsed_minutes=elapsed,
        minimum_minutes=minimum_minutes,
    )


async def check_readiness(
    session: AsyncSession, attempt_id: str, clock: Clock | None = None
) -> ReadinessReport:
    """
    Readiness report for an attempt. Read-only.

    Raises:
        AttemptNotFoundError: If attempt does not exist
    """
    clock = clock or system_clock
    attempt = await _load_attempt(session, attempt_id)
    return evaluate_readiness(_context_for(attempt), attempt.start_time, clock.now())


async def _recompute_task_average(session: AsyncSession, task_id: str) -> float | None:
    result = await session.execute(
        select(TaskAttemptModel.assessment).where(
            TaskAttemptModel.task_id == task_id,
            TaskAttemptModel.is_completed.is_(True),
        )
    )
    average = calculate_task_average(result.scalars().all())

    task = await session.get(TaskModel, task_id)
    if task:
        task.average_score = average
    return average


async def recompute_task_average_score(session: AsyncSession, task_id: str) -> float | None:
    """
    Recompute a task's average score from every completed attempt.

    Idempotent. Unreadable stored assessments are skipped.

    Raises:
        TaskNotFoundError: If task does not exist
    """
    if not await session.get(TaskModel, task_id):
        raise TaskNotFoundError(f"Task {task_id} not found")

    average = await _recompute_task_average(session, task_id)
    await session.commit()
    return average


async def complete_attempt(
    session: AsyncSession,
    attempt_id: str,
    evaluation: EvaluationResult,
    clock: Clock | None = None,
) -> CompletionResult:
    """
    Complete an attempt with the given axis scores.

    Args:
        session: Database session
        attempt_id: Attempt to complete
        evaluation: Four axis scores plus feedback
        clock: Time source (defaults to wall clock)

    Returns:
        Completed attempt, its assessment, and timing

    Raises:
        AttemptNotFoundError: If attempt does not exist
        AlreadyCompletedError: If the attempt was already completed (including
            by a concurrent call that won the race)
        ValidationError: If any score is outside [0, 100]
    """
    clock = clock or system_clock

    attempt = await _load_attempt(session, attempt_id)
    if attempt.is_completed:
        raise AlreadyCompletedError(f"Task attempt {attempt_id} already completed")

    context = _context_for(attempt)
    now = clock.now()
    assessment = build_assessment(
        context,
        evaluation,
        retry_count=attempt.retry_count,
        started_at=attempt.start_time,
        ended_at=now,
    )

    result = await session.execute(
        update(TaskAttemptModel)
        .where(TaskAttemptModel.id == attempt_id, TaskAttemptModel.is_completed.is_(False))
        .values(
            is_completed=True,
            end_time=now,
            assessment=assessment.model_dump(mode="json"),
            overall_score=assessment.overall_score,
            conversation=serialize_context(context),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await session.rollback()
        raise AlreadyCompletedError(f"Task attempt {attempt_id} already completed")

    estimated = attempt.task.estimated_duration
    await _recompute_task_average(session, attempt.task_id)

    learner = attempt.learner
    if attempt.task_id not in (learner.completed_tasks or []):
        learner.completed_tasks = [*(learner.completed_tasks or []), attempt.task_id]
    learner.current_task_id = None

    await session.commit()
    await session.refresh(attempt)

    completion_minutes = elapsed_minutes(attempt.start_time, now)
    logger.info(
        "Completed attempt %s with overall score %.1f", attempt_id, assessment.overall_score
    )

    return CompletionResult(
        attempt=_to_attempt(attempt),
        assessment=assessment,
        completion_time_minutes=completion_minutes,
        estimated_duration=estimated,
        efficiency=round_half_up(completion_minutes / estimated * 100) if estimated > 0 else 100,
    )


async def assess_and_complete(
    session: AsyncSession,
    attempt_id: str,
    evaluator: ConversationEvaluator,
    clock: Clock | None = None,
    fallback_on_error: bool = False,
) -> CompletionResult:
    """
    Have the evaluator score the conversation, then complete the attempt.

    Args:
        session: Database session
        attempt_id: Attempt to complete
        evaluator: Source of the axis scores
        clock: Time source (defaults to wall clock)
        fallback_on_error: Score heuristically instead of raising when the
            evaluator fails

    Raises:
        AttemptNotFoundError: If attempt does not exist
        AlreadyCompletedError: If the attempt is already completed
        UpstreamEvaluationError: If the evaluator fails and fallback is off
    """
    attempt = await _load_attempt(session, attempt_id)
    if attempt.is_completed:
        raise AlreadyCompletedError(f"Task attempt {attempt_id} already completed")

    context = _context_for(attempt)
    try:
        evaluation = await evaluator.generate_assessment(context)
    except UpstreamEvaluationError:
        if not fallback_on_error:
            raise
        logger.warning("Evaluator failed for attempt %s; using heuristic scores", attempt_id)
        evaluation = EvaluationResult(**build_fallback_scores(context).model_dump())

    return await complete_attempt(session, attempt_id, evaluation, clock=clock)


# ============================================================================
# Retry
# ============================================================================


def _previous_assessment(attempt: TaskAttemptModel) -> Assessment | None:
    if attempt.assessment is None:
        return None
    try:
        return parse_stored_assessment(attempt.assessment)
    except ValidationError as e:
        logger.warning("Unreadable assessment on attempt %s: %s", attempt.id, e)
        return None


async def retry_attempt(
    session: AsyncSession, attempt_id: str, clock: Clock | None = None
) -> RetryResult:
    """
    Start a fresh attempt at the same task as a completed one.

    Args:
        session: Database session
        attempt_id: The completed attempt being retried
        clock: Time source (defaults to wall clock)

    Returns:
        New attempt plus the framing for the retry

    Raises:
        AttemptNotFoundError: If the original attempt does not exist
        InvalidStateError: If the original is not completed, or its task is inactive
    """
    clock = clock or system_clock

    original = await _load_attempt(session, attempt_id)
    if not original.is_completed:
        raise InvalidStateError(
            "Can only retry completed attempts. Resume incomplete attempts instead."
        )

    task = original.task
    if not task.is_active:
        raise InvalidStateError(f"Task {task.id} is no longer active")

    learner = original.learner

    async with attempt_locks.for_pair(learner.id, task.id):
        prior_attempts = await _count_attempts(session, learner.id, task.id)
        context = initialize_context(
            TaskDefinition.model_validate(task),
            JLPTLevel(learner.proficiency),
            character=Character.model_validate(task.character) if task.character else None,
            task_attempt_count=prior_attempts,
        )

        retry = TaskAttemptModel(
            id=generate_entity_id(PREFIX_ATTEMPT),
            learner_id=learner.id,
            task_id=task.id,
            start_time=clock.now(),
            retry_count=prior_attempts,
            previous_attempt_id=original.id,
            conversation=serialize_context(context),
        )
        session.add(retry)
        learner.current_task_id = task.id

        await session.commit()
        await session.refresh(retry)

    previous = _previous_assessment(original)
    previous_score = original.overall_score
    logger.info("Retry %s created from attempt %s (#%d)", retry.id, original.id, prior_attempts + 1)

    return RetryResult(
        attempt=_to_attempt(retry),
        retry_context=RetryContext(
            attempt_number=prior_attempts + 1,
            previous_attempt_id=original.id,
            previous_score=previous_score,
            improvement_target=(
                min(100.0, previous_score + IMPROVEMENT_TARGET_STEP)
                if previous_score is not None
                else None
            ),
            improvement_areas=(
                previous.improvement_areas[:MAX_RETRY_FOCUS_AREAS] if previous else []
            ),
        ),
    )


def _trend_label(total_improvement: float) -> str:
    if total_improvement > 10:
        return "Improving"
    if total_improvement > 0:
        return "Slight improvement"
    return "Stable"


async def get_retry_statistics(session: AsyncSession, attempt_id: str) -> RetryStatistics:
    """
    History of the learner's attempts on this attempt's task.

    When another retry is not recommended, similar tasks the learner has not
    completed are listed as alternatives.

    Raises:
        AttemptNotFoundError: If attempt does not exist
        InvalidStateError: If the attempt is not completed yet
    """
    attempt = await _load_attempt(session, attempt_id)
    if not attempt.is_completed:
        raise InvalidStateError(f"Task attempt {attempt_id} not completed yet")

    attempts = await find_attempts_for(session, attempt.learner_id, attempt.task_id)
    completed = [a for a in attempts if a.is_completed]
    scores = [a.overall_score for a in completed if a.overall_score is not None]
    retry_count = len(attempts) - 1

    current = _previous_assessment(attempt)
    current_score = attempt.overall_score
    total_improvement = scores[-1] - scores[0] if scores else 0.0
    improvement_needed = current.improvement_areas if current else []

    recommendation = recommend_retry(
        current_score or 0.0, retry_count, focus_areas=improvement_needed
    )
    alternatives = []
    if not recommendation.recommended:
        alternatives = await get_similar_tasks(
            session, attempt.task_id, exclude_task_ids=attempt.learner.completed_tasks or []
        )

    return RetryStatistics(
        total_attempts=len(attempts),
        completed_attempts=len(completed),
        retry_count=retry_count,
        current_score=current_score,
        first_score=scores[0] if scores else None,
        best_score=max(scores) if scores else None,
        average_score=sum(scores) / len(scores) if scores else None,
        total_improvement=total_improvement,
        progress_trend=_trend_label(total_improvement),
        recommendation=recommendation,
        strengths=current.strengths if current else [],
        improvement_needed=improvement_needed,
        progress=calculate_progress_metrics(
            parse_valid_assessments(a.assessment for a in completed)
        ),
        alternatives=alternatives,
    )

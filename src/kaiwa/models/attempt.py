"""
TaskAttempt models for the conversation engine.

Per-learner attempt at a task. This is the INSTANCE LAYER that pairs with
the task template. An attempt is Active until it is completed exactly once;
a retry is a new row pointing back at the attempt it retries.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .assessment import Assessment, ProgressMetrics, RetryDecision
from .base import Base, TimestampMixin
from .recommendation import ScoredTask

# ============================================================================
# Pydantic Models (for API/validation)
# ============================================================================


class TaskAttempt(BaseModel):
    """Complete task attempt entity."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    learner_id: str
    task_id: str

    start_time: datetime
    end_time: datetime | None = None
    is_completed: bool = False
    retry_count: int = 0
    previous_attempt_id: str | None = None

    conversation: dict = Field(default_factory=dict)
    assessment: dict | None = None
    overall_score: float | None = None


class AttemptStart(BaseModel):
    """Result of starting or resuming an attempt."""

    attempt: TaskAttempt
    is_existing: bool


class RetryContext(BaseModel):
    """UI framing for a retry: what the learner is trying to beat."""

    attempt_number: int
    previous_attempt_id: str
    previous_score: float | None = None
    improvement_target: float | None = None
    improvement_areas: list[str] = Field(default_factory=list)


class RetryResult(BaseModel):
    """A freshly created retry attempt plus its framing."""

    attempt: TaskAttempt
    retry_context: RetryContext


class MessageResult(BaseModel):
    """Outcome of one learner turn."""

    attempt: TaskAttempt
    reply: str
    hint: str | None = None
    help_requested: bool = False
    completed_objective: str | None = None
    progress: int = 0


class CompletionResult(BaseModel):
    """A completed attempt with its assessment and timing."""

    attempt: TaskAttempt
    assessment: Assessment
    completion_time_minutes: int
    estimated_duration: int
    # Actual time as a percentage of the estimate (100 when no estimate)
    efficiency: int


class ReadinessReport(BaseModel):
    """Completion readiness of an attempt. Pure query, never stored."""

    is_ready: bool
    has_messages: bool
    objectives_complete: bool
    has_minimum_duration: bool

    message_count: int
    required_messages: int
    completed_objectives: int
    total_objectives: int
    elapsed_minutes: int
    minimum_minutes: int


class RetryStatistics(BaseModel):
    """History of every attempt a learner made on one task."""

    total_attempts: int
    completed_attempts: int
    retry_count: int
    current_score: float | None = None
    first_score: float | None = None
    best_score: float | None = None
    average_score: float | None = None
    total_improvement: float = 0.0
    progress_trend: str = "Stable"
    recommendation: RetryDecision
    strengths: list[str] = Field(default_factory=list)
    improvement_needed: list[str] = Field(default_factory=list)
    # Per-axis averages across the completed attempts
    progress: ProgressMetrics = Field(default_factory=ProgressMetrics)
    # Other tasks to move on to when another retry is not recommended
    alternatives: list[ScoredTask] = Field(default_factory=list)


# ============================================================================
# SQLAlchemy Models (for database)
# ============================================================================


class TaskAttemptModel(Base, TimestampMixin):
    """SQLAlchemy model for task_attempts table."""

    __tablename__ = "task_attempts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    learner_id: Mapped[str] = mapped_column(
        String, ForeignKey("learners.id", ondelete="CASCADE"), nullable=False
    )
    task_id: Mapped[str] = mapped_column(
        String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    previous_attempt_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("task_attempts.id", ondelete="SET NULL"), nullable=True
    )

    # Serialized ContextSnapshot / Assessment
    conversation: Mapped[dict] = mapped_column(JSON, default=dict)
    assessment: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    overall_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Relationships
    task: Mapped["TaskModel"] = relationship(  # type: ignore
        "TaskModel", back_populates="attempts"
    )
    learner: Mapped["LearnerModel"] = relationship(  # type: ignore
        "LearnerModel", back_populates="attempts"
    )
    previous_attempt: Mapped[Optional["TaskAttemptModel"]] = relationship(
        "TaskAttemptModel", remote_side=[id]
    )

    __table_args__ = (
        Index("idx_task_attempts_learner_task", "learner_id", "task_id"),
        Index("idx_task_attempts_task_completed", "task_id", "is_completed"),
    )

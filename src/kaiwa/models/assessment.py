"""
Assessment models for the conversation engine.

Scores a finished conversation on four axes. The stored form is versioned;
older payloads are upgraded by ``kaiwa.services.assessment_service``.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

# Bump when the stored Assessment shape changes.
# v1: flat camelCase blob {taskAchievement, fluency, ..., overallScore, feedbackText}
# v2: this module
ASSESSMENT_SCHEMA_VERSION = 2


class AssessmentAxis(str, Enum):
    """The four scored criteria."""

    TASK_ACHIEVEMENT = "task_achievement"
    FLUENCY = "fluency"
    VOCABULARY_GRAMMAR = "vocabulary_grammar_accuracy"
    POLITENESS = "politeness"

    @property
    def label(self) -> str:
        return AXIS_LABELS[self]


AXIS_LABELS = {
    AssessmentAxis.TASK_ACHIEVEMENT: "Task Achievement",
    AssessmentAxis.FLUENCY: "Fluency",
    AssessmentAxis.VOCABULARY_GRAMMAR: "Vocabulary & Grammar",
    AssessmentAxis.POLITENESS: "Politeness",
}


class AxisScores(BaseModel):
    """Four bounded scores, one per axis."""

    task_achievement: int = Field(..., ge=0, le=100)
    fluency: int = Field(..., ge=0, le=100)
    vocabulary_grammar_accuracy: int = Field(..., ge=0, le=100)
    politeness: int = Field(..., ge=0, le=100)

    def get(self, axis: AssessmentAxis) -> int:
        return getattr(self, axis.value)


class AxisFeedback(BaseModel):
    """Free-text feedback per axis."""

    task_achievement: str = ""
    fluency: str = ""
    vocabulary_grammar: str = ""
    politeness: str = ""


class EvaluationResult(BaseModel):
    """
    Raw evaluation as produced by the text-evaluation collaborator (or posted
    by a caller). Scores are unchecked here; completion validates the range.
    """

    task_achievement: int
    fluency: int
    vocabulary_grammar_accuracy: int
    politeness: int
    specific_feedback: AxisFeedback = Field(default_factory=AxisFeedback)
    strengths: list[str] = Field(default_factory=list)
    areas_for_improvement: list[str] = Field(default_factory=list)
    overall_feedback: str = ""


class RetryDecision(BaseModel):
    """Whether another attempt is recommended, and why."""

    recommended: bool
    reasoning: str
    focus_areas: list[str] = Field(default_factory=list)


class Assessment(AxisScores):
    """Stored assessment of a completed attempt."""

    schema_version: int = ASSESSMENT_SCHEMA_VERSION

    overall_score: float = Field(..., ge=0, le=100)
    specific_feedback: AxisFeedback = Field(default_factory=AxisFeedback)
    overall_feedback: str = ""

    strengths: list[str] = Field(default_factory=list)
    improvement_areas: list[str] = Field(default_factory=list)

    retry_recommendation: bool = False
    retry_reasoning: str = ""

    objective_completion: dict[str, bool] = Field(default_factory=dict)
    time_to_complete_minutes: int | None = None
    assessed_at: datetime | None = None


class ProgressMetrics(BaseModel):
    """Averages and trend over a learner's assessments."""

    average_task_achievement: float = 0.0
    average_fluency: float = 0.0
    average_vocabulary_grammar_accuracy: float = 0.0
    average_politeness: float = 0.0
    average_overall: float = 0.0
    trend: str = "stable"

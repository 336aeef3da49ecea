"""
Recommendation models.

Read-only views built from a learner's history; nothing here is stored.
"""

from pydantic import BaseModel, Field

from .task import JLPTLevel, TaskDefinition


class LearnerProfile(BaseModel):
    """What the scorer knows about a learner."""

    learner_id: str
    current_level: JLPTLevel
    recommended_level: JLPTLevel
    preferred_categories: list[str] = Field(default_factory=list)
    completed_task_ids: list[str] = Field(default_factory=list)
    # Categories of recently completed attempts
    attempted_categories: list[str] = Field(default_factory=list)
    average_completion_rate: float = 0.0


class ScoredTask(BaseModel):
    """A candidate task with its recommendation score and the reasons for it."""

    task: TaskDefinition
    score: int
    reasons: list[str] = Field(default_factory=list)


class RecommendationInsights(BaseModel):
    progress_suggestion: str
    completion_trend: str


class Recommendations(BaseModel):
    """Ranked tasks for a learner plus the profile they were ranked against."""

    recommendations: list[ScoredTask] = Field(default_factory=list)
    profile: LearnerProfile
    insights: RecommendationInsights

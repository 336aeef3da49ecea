"""
Conversation engine models.

Exports all Pydantic and SQLAlchemy models for easy importing.
"""

# Assessment
from .assessment import (
    ASSESSMENT_SCHEMA_VERSION,
    Assessment,
    AssessmentAxis,
    AxisFeedback,
    AxisScores,
    EvaluationResult,
    ProgressMetrics,
    RetryDecision,
)

# Attempt
from .attempt import (
    AttemptStart,
    CompletionResult,
    MessageResult,
    ReadinessReport,
    RetryContext,
    RetryResult,
    RetryStatistics,
    TaskAttempt,
    TaskAttemptModel,
)
from .base import Base, TimestampMixin

# Character
from .character import Character, CharacterBase, CharacterCreate, CharacterModel

# Conversation context
from .context import (
    ContextSnapshot,
    ConversationContext,
    ConversationMode,
    Message,
    MessageRole,
)

# Learner
from .learner import Learner, LearnerBase, LearnerCreate, LearnerModel

# Recommendation
from .recommendation import LearnerProfile, RecommendationInsights, Recommendations, ScoredTask

# Task
from .task import JLPTLevel, TaskBase, TaskCreate, TaskDefinition, TaskModel

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Task
    "JLPTLevel",
    "TaskBase",
    "TaskCreate",
    "TaskDefinition",
    "TaskModel",
    # Character
    "Character",
    "CharacterBase",
    "CharacterCreate",
    "CharacterModel",
    # Learner
    "Learner",
    "LearnerBase",
    "LearnerCreate",
    "LearnerModel",
    # Context
    "ContextSnapshot",
    "ConversationContext",
    "ConversationMode",
    "Message",
    "MessageRole",
    # Assessment
    "ASSESSMENT_SCHEMA_VERSION",
    "Assessment",
    "AssessmentAxis",
    "AxisFeedback",
    "AxisScores",
    "EvaluationResult",
    "ProgressMetrics",
    "RetryDecision",
    # Attempt
    "AttemptStart",
    "CompletionResult",
    "MessageResult",
    "ReadinessReport",
    "RetryContext",
    "RetryResult",
    "RetryStatistics",
    "TaskAttempt",
    "TaskAttemptModel",
    # Recommendation
    "LearnerProfile",
    "RecommendationInsights",
    "Recommendations",
    "ScoredTask",
]

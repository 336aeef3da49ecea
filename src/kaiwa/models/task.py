"""
Task models for the conversation engine.

A task is a roleplay scenario the learner practises with an AI character.
This is a TEMPLATE LAYER entity shared across learners. Per-learner state
lives in TaskAttempt.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin


class JLPTLevel(str, Enum):
    """JLPT difficulty tier, declared easiest to hardest."""

    N5 = "N5"
    N4 = "N4"
    N3 = "N3"
    N2 = "N2"
    N1 = "N1"

    @property
    def rank(self) -> int:
        """Position in the easiest -> hardest ordering (N5 is 0)."""
        return list(JLPTLevel).index(self)

    def next_level(self) -> "JLPTLevel":
        """The next harder tier. N1 has nowhere to go and returns itself."""
        levels = list(JLPTLevel)
        return levels[min(self.rank + 1, len(levels) - 1)]


# ============================================================================
# Pydantic Models (for API/validation)
# ============================================================================


class TaskBase(BaseModel):
    """Base fields for task creation."""

    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="")
    category: str = Field(..., min_length=1, max_length=100)
    difficulty: JLPTLevel = Field(default=JLPTLevel.N5)
    scenario: str = Field(default="")
    learning_objectives: list[str] = Field(
        default_factory=list, description="Ordered objectives the learner works through"
    )
    estimated_duration: int = Field(default=10, ge=0, description="Minutes")
    character_id: str | None = Field(default=None)

    @field_validator("learning_objectives")
    @classmethod
    def _objectives_are_distinct(cls, objectives: list[str]) -> list[str]:
        # Objectives are tracked by text
        duplicates = sorted({o for o in objectives if objectives.count(o) > 1})
        if duplicates:
            raise ValueError(f"Duplicate learning objectives: {duplicates}")
        return objectives


class TaskCreate(TaskBase):
    """Schema for creating a new task."""

    id: str | None = Field(default=None, pattern=r"^[a-z0-9\-\.]+$")
    is_active: bool = True


class TaskDefinition(TaskBase):
    """Complete task entity returned from database."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    is_active: bool = True
    usage_count: int = 0
    average_score: float | None = None


# ============================================================================
# SQLAlchemy Models (for database)
# ============================================================================


class TaskModel(Base, TimestampMixin):
    """SQLAlchemy model for tasks table."""

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String, primary_key=True)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    difficulty: Mapped[str] = mapped_column(String(2), nullable=False, default="N5", index=True)
    scenario: Mapped[str] = mapped_column(Text, default="")
    learning_objectives: Mapped[list[str]] = mapped_column(JSON, default=list)
    estimated_duration: Mapped[int] = mapped_column(Integer, default=10)

    character_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("characters.id", ondelete="SET NULL"), nullable=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Aggregates, recomputed from attempts
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    average_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Relationships
    character: Mapped[Optional["CharacterModel"]] = relationship(  # type: ignore
        "CharacterModel", back_populates="tasks"
    )
    attempts: Mapped[list["TaskAttemptModel"]] = relationship(  # type: ignore
        "TaskAttemptModel",
        back_populates="task",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<TaskModel {self.id} {self.difficulty} {self.title!r}>"

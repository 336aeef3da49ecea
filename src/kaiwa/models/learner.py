"""
Learner models for the conversation engine.

User profile used for proficiency framing and recommendations.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from .base import Base
from .task import JLPTLevel

# ============================================================================
# Pydantic Models (for API/validation)
# ============================================================================


class LearnerBase(BaseModel):
    """Base learner fields."""

    name: str = Field(default="")
    proficiency: JLPTLevel = Field(default=JLPTLevel.N5)
    preferred_categories: list[str] = Field(default_factory=list)


class LearnerCreate(LearnerBase):
    """Schema for creating a learner."""

    id: str | None = Field(default=None, description="External ID if provided")


class Learner(LearnerBase):
    """Complete learner entity."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    current_task_id: str | None = None
    completed_tasks: list[str] = Field(default_factory=list)
    created_at: datetime


# ============================================================================
# SQLAlchemy Models (for database)
# ============================================================================


class LearnerModel(Base):
    """SQLAlchemy model for learners table."""

    __tablename__ = "learners"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), default="")
    proficiency: Mapped[str] = mapped_column(String(2), default="N5")
    preferred_categories: Mapped[list[str]] = mapped_column(JSON, default=list)
    current_task_id: Mapped[str | None] = mapped_column(String, nullable=True)
    completed_tasks: Mapped[list[str]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    attempts: Mapped[list["TaskAttemptModel"]] = relationship(  # type: ignore
        "TaskAttemptModel",
        back_populates="learner",
        cascade="all, delete-orphan",
    )

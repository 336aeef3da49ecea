"""
Character models for the conversation engine.

The AI persona a learner talks to during a task. Read-only to the core.
"""

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin

# ============================================================================
# Pydantic Models (for API/validation)
# ============================================================================


class CharacterBase(BaseModel):
    """Base character fields."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="")
    personality: dict = Field(default_factory=dict)
    speaking_style: str = Field(default="")
    relationship_type: str | None = Field(default=None)


class CharacterCreate(CharacterBase):
    """Schema for creating a character."""

    id: str | None = None


class Character(CharacterBase):
    """Complete character entity."""

    model_config = ConfigDict(from_attributes=True)

    id: str


# ============================================================================
# SQLAlchemy Models (for database)
# ============================================================================


class CharacterModel(Base, TimestampMixin):
    """SQLAlchemy model for characters table."""

    __tablename__ = "characters"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    personality: Mapped[dict] = mapped_column(JSON, default=dict)
    speaking_style: Mapped[str] = mapped_column(Text, default="")
    relationship_type: Mapped[str | None] = mapped_column(String, nullable=True)

    tasks: Mapped[list["TaskModel"]] = relationship(  # type: ignore
        "TaskModel", back_populates="character"
    )

"""
Conversation context models.

ConversationContext is the in-memory state of one task attempt: the message
log plus objective and hint bookkeeping. ContextSnapshot is its persisted form.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .character import Character
from .task import JLPTLevel, TaskDefinition


class MessageRole(str, Enum):
    """Who sent a message."""

    USER = "user"
    ASSISTANT = "assistant"


class ConversationMode(str, Enum):
    """Conversation mode. Only task-based conversations exist today."""

    TASK_BASED = "task-based"


class Message(BaseModel):
    """A single turn in the conversation log."""

    role: MessageRole
    content: str
    timestamp: datetime


class ConversationContext(BaseModel):
    """
    State for one in-progress task attempt.

    Treated as a value: the service functions in
    ``kaiwa.services.conversation`` never mutate a context in place and
    always return an updated copy.
    """

    mode: ConversationMode = ConversationMode.TASK_BASED
    task: TaskDefinition
    character: Character | None = None
    user_proficiency: JLPTLevel = JLPTLevel.N5

    current_objective_index: int = Field(default=0, ge=0)
    completed_objectives: list[str] = Field(default_factory=list)
    conversation_history: list[Message] = Field(default_factory=list)
    hints: list[str] = Field(default_factory=list)

    # Prior attempts by this learner on this task (retry framing only)
    task_attempt_count: int = Field(default=0, ge=0)

    @property
    def learning_objectives(self) -> list[str]:
        return self.task.learning_objectives

    @property
    def user_messages(self) -> list[Message]:
        return [m for m in self.conversation_history if m.role == MessageRole.USER]


class ContextSnapshot(BaseModel):
    """Serialized conversation context as stored on a TaskAttempt."""

    messages: list[Message] = Field(default_factory=list)
    completed_objectives: list[str] = Field(default_factory=list)
    current_objective: int = 0
    hints: list[str] = Field(default_factory=list)
    progress: int = 0

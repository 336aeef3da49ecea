"""
Exceptions raised by the conversation engine.

Callers (CLI, HTTP layers) catch ``KaiwaError`` and map the concrete kind to
their own error surface. Nothing here is retried by the core.
"""


class KaiwaError(Exception):
    """Base exception for conversation engine operations."""


class ValidationError(KaiwaError):
    """Input is out of range or malformed (scores, stored snapshots, messages)."""


class NotFoundError(KaiwaError):
    """A referenced entity does not exist."""


class TaskNotFoundError(NotFoundError):
    """Referenced task does not exist."""


class AttemptNotFoundError(NotFoundError):
    """Referenced task attempt does not exist."""


class LearnerNotFoundError(NotFoundError):
    """Referenced learner does not exist."""


class AlreadyCompletedError(KaiwaError):
    """The attempt was already completed; completion is terminal."""


class InvalidStateError(KaiwaError):
    """The operation is not allowed in the entity's current state."""


class UpstreamEvaluationError(KaiwaError):
    """The text-completion collaborator failed or returned malformed output."""

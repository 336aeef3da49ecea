"""
Objective tracking.

Marks objectives complete and reports progress through a task's ordered
learning objectives.
"""

from kaiwa.models import ConversationContext
from kaiwa.utils.rounding import round_half_up


def complete_objective(context: ConversationContext, objective_index: int) -> ConversationContext:
    """
    Mark the objective at ``objective_index`` as completed.

    - Out-of-range indexes and already completed objectives are no-ops.
    - The current objective pointer only advances when the current objective
      itself is completed; completing one further ahead is recorded but does
      not skip the ones in between.

    Returns:
        Updated context (the same object when nothing changed)
    """
    objectives = context.learning_objectives
    if not 0 <= objective_index < len(objectives):
        return context

    objective = objectives[objective_index]
    if objective in context.completed_objectives:
        return context

    update: dict = {"completed_objectives": [*context.completed_objectives, objective]}
    if objective_index == context.current_objective_index:
        update["current_objective_index"] = context.current_objective_index + 1

    return context.model_copy(update=update)


def are_all_objectives_completed(context: ConversationContext) -> bool:
    return len(context.completed_objectives) == len(context.learning_objectives)


def get_current_objective(context: ConversationContext) -> str | None:
    """Text of the objective being worked on, or None once past the last one."""
    objectives = context.learning_objectives
    if 0 <= context.current_objective_index < len(objectives):
        return objectives[context.current_objective_index]
    return None


def get_progress(context: ConversationContext) -> int:
    """
    Percentage of objectives completed, rounded to the nearest integer.

    A task without objectives counts as fully complete.
    """
    total = len(context.learning_objectives)
    if total == 0:
        return 100
    return round_half_up(100 * len(context.completed_objectives) / total)

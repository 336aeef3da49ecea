"""
Tests for objective tracking.
"""

from kaiwa.models import JLPTLevel, TaskDefinition
from kaiwa.services.conversation import (
    are_all_objectives_completed,
    complete_objective,
    get_current_objective,
    get_progress,
    initialize_context,
)


def test_complete_current_objective_advances(task_definition):
    context = complete_objective(initialize_context(task_definition, JLPTLevel.N5), 0)

    assert context.completed_objectives == ["Greet the clerk"]
    assert context.current_objective_index == 1
    assert get_current_objective(context) == "Ask for a ticket"


def test_complete_objective_is_idempotent(task_definition):
    once = complete_objective(initialize_context(task_definition, JLPTLevel.N5), 0)
    twice = complete_objective(once, 0)

    assert twice is once
    assert twice.completed_objectives == ["Greet the clerk"]
    assert twice.current_objective_index == 1


def test_complete_out_of_range_is_noop(task_definition):
    context = initialize_context(task_definition, JLPTLevel.N5)

    assert complete_objective(context, 3) is context
    assert complete_objective(context, -1) is context


def test_completing_a_later_objective_does_not_advance(task_definition):
    context = complete_objective(initialize_context(task_definition, JLPTLevel.N5), 2)

    assert context.completed_objectives == ["Pay and say thanks"]
    assert context.current_objective_index == 0


def test_all_completed(task_definition):
    context = initialize_context(task_definition, JLPTLevel.N5)
    for i in range(3):
        assert not are_all_objectives_completed(context)
        context = complete_objective(context, i)

    assert are_all_objectives_completed(context)
    assert get_current_objective(context) is None
    assert get_progress(context) == 100


def test_progress_rounds_to_nearest(task_definition):
    context = initialize_context(task_definition, JLPTLevel.N5)

    assert get_progress(context) == 0
    assert get_progress(complete_objective(context, 0)) == 33
    assert get_progress(complete_objective(complete_objective(context, 0), 1)) == 67


def test_progress_without_objectives_is_complete():
    task = TaskDefinition(id="task-free", title="Free talk", category="daily")
    context = initialize_context(task, JLPTLevel.N5)

    assert are_all_objectives_completed(context)
    assert get_progress(context) == 100
    assert get_current_objective(context) is None

"""
End-to-end tests for the kaiwa CLI against a throwaway SQLite database.
"""

import json
import re

import pytest
from typer.testing import CliRunner

from kaiwa.cli import main as cli_main
from kaiwa.cli.main import app
from kaiwa.settings import clear_settings_cache

runner = CliRunner()


def invoke(*args: str):
    return runner.invoke(app, list(args))


def created_id(output: str, prefix: str) -> str:
    match = re.search(rf"\b({prefix}-[0-9a-f]{{8}})\b", output)
    assert match, output
    return match.group(1)


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep rich from wrapping table cells at the default 80 columns."""
    monkeypatch.setattr(cli_main.console, "width", 200)


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    monkeypatch.setenv("KAIWA_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'kaiwa.db'}")
    clear_settings_cache()
    result = invoke("init-db")
    assert result.exit_code == 0, result.output


@pytest.fixture
def learner_id():
    result = invoke("learner", "create", "Aiko", "--level", "N5", "--category", "restaurant")
    assert result.exit_code == 0, result.output
    return created_id(result.output, "learner")


@pytest.fixture
def task_id():
    result = invoke(
        "task",
        "create",
        "Order coffee",
        "--category",
        "restaurant",
        "--objective",
        "Order a drink",
        "--objective",
        "Ask for the bill",
    )
    assert result.exit_code == 0, result.output
    assert "Objectives: 2" in result.output
    return created_id(result.output, "task")


def test_task_list(task_id):
    result = invoke("task", "list", "--category", "restaurant")

    assert result.exit_code == 0
    assert "Order coffee" in result.output


def test_task_list_empty():
    result = invoke("task", "list")

    assert result.exit_code == 0
    assert "No tasks found." in result.output


def test_task_import(tmp_path):
    tasks_file = tmp_path / "tasks.json"
    tasks_file.write_text(
        json.dumps(
            {
                "tasks": [
                    {"id": "hotel-001", "title": "Check in", "category": "hotel"},
                    {"id": "hotel-002", "title": "Ask for towels", "category": "hotel"},
                ]
            }
        ),
        encoding="utf-8",
    )

    result = invoke("task", "import", str(tasks_file))

    assert result.exit_code == 0, result.output
    assert "Imported 2 tasks." in result.output
    assert "Ask for towels" in invoke("task", "list").output


def test_task_create_rejects_duplicate_objectives():
    result = invoke(
        "task", "create", "Order coffee", "-c", "restaurant",
        "-o", "Order a drink", "-o", "Order a drink",
    )

    assert result.exit_code == 1
    assert "Duplicate learning objectives" in result.output


def test_task_import_missing_file(tmp_path):
    result = invoke("task", "import", str(tmp_path / "missing.json"))

    assert result.exit_code == 1


def test_attempt_lifecycle(learner_id, task_id):
    started = invoke("attempt", "start", learner_id, task_id)
    assert started.exit_code == 0, started.output
    assert "Started attempt" in started.output
    attempt_id = created_id(started.output, "att")

    resumed = invoke("attempt", "start", learner_id, task_id)
    assert f"Resumed attempt {attempt_id}" in resumed.output

    readiness = invoke("attempt", "readiness", attempt_id)
    assert readiness.exit_code == 0
    assert "Messages: 0/5" in readiness.output

    completed = invoke("attempt", "complete", attempt_id, "--scores", "80,70,60,50")
    assert completed.exit_code == 0, completed.output
    assert "66.5" in completed.output

    again = invoke("attempt", "complete", attempt_id, "--scores", "90,90,90,90")
    assert again.exit_code == 1
    assert "already completed" in again.output

    retried = invoke("attempt", "retry", attempt_id)
    assert retried.exit_code == 0, retried.output
    assert "Starting retry attempt #2" in retried.output
    assert "target: 81.5" in retried.output

    stats = invoke("attempt", "stats", attempt_id)
    assert stats.exit_code == 0, stats.output
    assert "Attempts: 2 (1 completed)" in stats.output
    assert "Averages: task 80.0, fluency 70.0, vocabulary 60.0, politeness 50.0" in stats.output

    average = invoke("task", "recompute", task_id)
    assert "Average score: 66.5" in average.output


def test_complete_rejects_malformed_scores(learner_id, task_id):
    attempt_id = created_id(invoke("attempt", "start", learner_id, task_id).output, "att")

    result = invoke("attempt", "complete", attempt_id, "--scores", "80,70")

    assert result.exit_code == 1
    assert "four integers" in result.output


def test_complete_rejects_out_of_range_scores(learner_id, task_id):
    attempt_id = created_id(invoke("attempt", "start", learner_id, task_id).output, "att")

    result = invoke("attempt", "complete", attempt_id, "--scores", "101,70,60,50")

    assert result.exit_code == 1
    assert "Error" in result.output


def test_deactivated_task_cannot_start(learner_id, task_id):
    assert invoke("task", "deactivate", task_id).exit_code == 0

    result = invoke("attempt", "start", learner_id, task_id)

    assert result.exit_code == 1
    assert "not active" in result.output


def test_unknown_learner(task_id):
    result = invoke("attempt", "start", "learner-missing", task_id)

    assert result.exit_code == 1
    assert "Learner learner-missing not found" in result.output


def test_recommend_tasks(learner_id, task_id):
    result = invoke("recommend", "tasks", learner_id, "--reasons")

    assert result.exit_code == 0, result.output
    assert task_id in result.output
    assert "Completion trend: Needs Improvement" in result.output


def test_recommend_similar(task_id):
    other = created_id(invoke("task", "create", "Order cake", "-c", "restaurant").output, "task")

    result = invoke("recommend", "similar", task_id)

    assert result.exit_code == 0, result.output
    assert other in result.output


def test_recommend_next_for_top_level_learner():
    learner = created_id(invoke("learner", "create", "Ken", "--level", "N1").output, "learner")

    result = invoke("recommend", "next", learner)

    assert result.exit_code == 0
    assert "No tasks to recommend." in result.output


def test_recommend_daily(learner_id, task_id):
    result = invoke("recommend", "daily", learner_id)

    assert result.exit_code == 0, result.output
    assert f"Today's task: {task_id}" in result.output


def test_recommend_focus(learner_id, task_id):
    result = invoke("recommend", "focus", learner_id, "task_achievement")

    assert result.exit_code == 0, result.output
    assert task_id in result.output

"""
Prompts for the conversation evaluator.

System prompt for the roleplay partner, plus the assessment, hint and
proficiency-estimation prompts. Everything here is plain string building.
"""

import json
from collections.abc import Sequence

from kaiwa.models import AxisScores, Character, JLPTLevel, Message, TaskDefinition

# How the partner should pitch its Japanese at each level
JLPT_LEVEL_GUIDANCE: dict[JLPTLevel, dict[str, str]] = {
    JLPTLevel.N5: {
        "description": "Beginner level",
        "vocabulary": "basic everyday words",
        "grammar": "simple sentence structures",
        "complexity": "very simple and clear",
    },
    JLPTLevel.N4: {
        "description": "Elementary level",
        "vocabulary": "everyday conversation words",
        "grammar": "basic conversational structures",
        "complexity": "simple and straightforward",
    },
    JLPTLevel.N3: {
        "description": "Intermediate level",
        "vocabulary": "common daily life vocabulary",
        "grammar": "intermediate sentence patterns",
        "complexity": "moderately complex",
    },
    JLPTLevel.N2: {
        "description": "Upper-intermediate level",
        "vocabulary": "a broader range of topics",
        "grammar": "complex sentence structures",
        "complexity": "natural and nuanced",
    },
    JLPTLevel.N1: {
        "description": "Advanced level",
        "vocabulary": "a wide range of contexts",
        "grammar": "sophisticated expressions",
        "complexity": "natural, native-like",
    },
}

# Hints only look at the tail of the conversation
HINT_HISTORY_WINDOW = 4

TASK_SYSTEM_PROMPT = """You are a Japanese conversation partner helping a student practise through a roleplay task.

## Student Profile

- **JLPT Level**: {level} ({description})
- **Language Complexity**: Use {complexity} Japanese
- **Vocabulary**: Focus on {vocabulary}
- **Grammar**: Use {grammar}

## Current Task

- **Title**: {title}
- **Category**: {category}
- **Scenario**: {scenario}

## Learning Objectives

{objectives}

## Your Role

{role}

## Guidelines

1. Respond primarily in Japanese at {level} level
2. Guide the student through the learning objectives in order
3. Give natural responses that fit the scenario
4. Gently correct major errors by modelling correct usage
5. Encourage the student and offer hints if they struggle
6. Keep responses concise (2-4 sentences) unless an explanation is needed
7. Use politeness (敬語) appropriate to the social context
"""

CHARACTER_ROLE = """You are playing the character "{name}": {description}
- **Relationship**: {relationship}
- **Speaking style**: {speaking_style}

Stay in character while helping the student complete the task objectives."""

DEFAULT_ROLE = (
    "You are a helpful conversation partner in this scenario. Guide the student "
    "naturally through the task while keeping your Japanese at their level."
)

ASSESSMENT_PROMPT = """Evaluate this Japanese language learning conversation against four criteria.

## Task Details

- **Title**: {title}
- **JLPT Level**: {level}
- **Learning Objectives**: {objectives}

## Conversation to Evaluate

{transcript}

## Evaluation Criteria (score each 0-100)

1. **Task Achievement (タスク達成度)**: Were the learning objectives achieved? Was the scenario navigated successfully?
2. **Fluency (流暢さ)**: How natural was the flow? Did the student keep the conversation moving?
3. **Vocabulary & Grammar Accuracy (語彙・文法的正確さ)**: Was vocabulary appropriate for {level}? Was grammar correct?
4. **Politeness (丁寧さ)**: Was the formality appropriate to the social context? Were polite expressions used correctly?

## Response Format

Respond with a single JSON object and nothing else:
{{
  "task_achievement": <integer 0-100>,
  "fluency": <integer 0-100>,
  "vocabulary_grammar_accuracy": <integer 0-100>,
  "politeness": <integer 0-100>,
  "specific_feedback": {{
    "task_achievement": "<feedback>",
    "fluency": "<feedback>",
    "vocabulary_grammar": "<feedback>",
    "politeness": "<feedback>"
  }},
  "areas_for_improvement": ["<area>", ...],
  "strengths": ["<strength>", ...],
  "overall_feedback": "<overall feedback in English>"
}}"""

HINT_PROMPT = """The student is working on this task objective but seems to be struggling.

- **Task**: {title}
- **Current Objective**: {objective}
- **Scenario**: {scenario}

Recent conversation:
{transcript}

Write one hint in Japanese that:
1. Does not give away the complete answer
2. Guides them toward the objective
3. Uses vocabulary and grammar suitable for {level}
4. Encourages them to try

Respond with just the hint."""

PROFICIENCY_PROMPT = """Based on this student's performance across several tasks, estimate their current JLPT level.

## Assessment History

{history}

Respond with a single JSON object and nothing else:
{{
  "estimated_level": "<N5|N4|N3|N2|N1>",
  "confidence": <0-100>,
  "reasoning": "<short explanation>"
}}"""


def format_transcript(messages: Sequence[Message]) -> str:
    return "\n\n".join(f"{m.role.value.upper()}: {m.content}" for m in messages)


def format_objectives(objectives: Sequence[str]) -> str:
    if not objectives:
        return "(none; keep the conversation natural)"
    return "\n".join(f"{i}. {objective}" for i, objective in enumerate(objectives, start=1))


def build_character_role(character: Character | None) -> str:
    if character is None:
        return DEFAULT_ROLE
    return CHARACTER_ROLE.format(
        name=character.name,
        description=character.description or "A conversation partner",
        relationship=character.relationship_type or "acquaintance",
        speaking_style=character.speaking_style or "Natural and friendly",
    )


def build_task_system_prompt(
    task: TaskDefinition, proficiency: JLPTLevel, character: Character | None = None
) -> str:
    """System prompt for the roleplay partner, pitched at the learner's level."""
    guidance = JLPT_LEVEL_GUIDANCE[proficiency]
    return TASK_SYSTEM_PROMPT.format(
        level=proficiency.value,
        title=task.title,
        category=task.category,
        scenario=task.scenario or task.description,
        objectives=format_objectives(task.learning_objectives),
        role=build_character_role(character),
        **guidance,
    )


def build_assessment_prompt(
    task: TaskDefinition, history: Sequence[Message], proficiency: JLPTLevel
) -> str:
    return ASSESSMENT_PROMPT.format(
        title=task.title,
        level=proficiency.value,
        objectives=json.dumps(task.learning_objectives, ensure_ascii=False),
        transcript=format_transcript(history),
    )


def build_hint_prompt(
    task: TaskDefinition, objective: str, history: Sequence[Message], proficiency: JLPTLevel
) -> str:
    return HINT_PROMPT.format(
        title=task.title,
        objective=objective,
        scenario=task.scenario or task.description,
        transcript=format_transcript(history[-HINT_HISTORY_WINDOW:]),
        level=proficiency.value,
    )


def build_proficiency_prompt(history: Sequence[tuple[AxisScores, JLPTLevel]]) -> str:
    """
    Args:
        history: (scores, task difficulty) pairs, oldest first
    """
    blocks = [
        f"Task {i} ({difficulty.value} level):\n"
        f"- Task Achievement: {scores.task_achievement}/100\n"
        f"- Fluency: {scores.fluency}/100\n"
        f"- Vocabulary & Grammar: {scores.vocabulary_grammar_accuracy}/100\n"
        f"- Politeness: {scores.politeness}/100"
        for i, (scores, difficulty) in enumerate(history, start=1)
    ]
    return PROFICIENCY_PROMPT.format(history="\n\n".join(blocks))

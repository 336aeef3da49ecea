"""
Task catalogue service.

CRUD for task definitions and the characters attached to them. Tasks are
authored content; the attempt lifecycle only reads them and bumps their
aggregates.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kaiwa.errors import NotFoundError, TaskNotFoundError
from kaiwa.models import (
    Character,
    CharacterCreate,
    CharacterModel,
    JLPTLevel,
    TaskCreate,
    TaskDefinition,
    TaskModel,
)
from kaiwa.utils.ids import PREFIX_CHARACTER, PREFIX_TASK, generate_entity_id


async def create_task(session: AsyncSession, task_data: TaskCreate) -> TaskDefinition:
    """
    Create a new task definition.

    Args:
        session: Database session
        task_data: Task creation data

    Returns:
        Created task

    Raises:
        NotFoundError: If character_id references a missing character
    """
    if task_data.character_id:
        character = await session.get(CharacterModel, task_data.character_id)
        if not character:
            raise NotFoundError(f"Character {task_data.character_id} not found")

    task_model = TaskModel(
        id=task_data.id or generate_entity_id(PREFIX_TASK),
        title=task_data.title,
        description=task_data.description,
        category=task_data.category,
        difficulty=task_data.difficulty.value,
        scenario=task_data.scenario,
        learning_objectives=list(task_data.learning_objectives),
        estimated_duration=task_data.estimated_duration,
        character_id=task_data.character_id,
        is_active=task_data.is_active,
    )

    session.add(task_model)
    await session.commit()
    await session.refresh(task_model)

    return TaskDefinition.model_validate(task_model)


async def get_task(session: AsyncSession, task_id: str) -> TaskDefinition:
    """
    Retrieve a task by ID.

    Raises:
        TaskNotFoundError: If task does not exist
    """
    task_model = await session.get(TaskModel, task_id)
    if not task_model:
        raise TaskNotFoundError(f"Task {task_id} not found")

    return TaskDefinition.model_validate(task_model)


async def list_tasks(
    session: AsyncSession,
    category: str | None = None,
    difficulty: JLPTLevel | str | None = None,
    active_only: bool = True,
) -> list[TaskDefinition]:
    """
    List tasks, optionally filtered.

    Args:
        session: Database session
        category: Only tasks in this category
        difficulty: Only tasks at this JLPT level
        active_only: Exclude deactivated tasks

    Returns:
        Tasks ordered by difficulty then id
    """
    query = select(TaskModel)

    if category:
        query = query.where(TaskModel.category == category)
    if difficulty:
        query = query.where(TaskModel.difficulty == JLPTLevel(difficulty).value)
    if active_only:
        query = query.where(TaskModel.is_active.is_(True))

    result = await session.execute(query.order_by(TaskModel.difficulty.desc(), TaskModel.id))
    return [TaskDefinition.model_validate(t) for t in result.scalars().all()]


async def set_task_active(session: AsyncSession, task_id: str, is_active: bool) -> TaskDefinition:
    """
    Activate or deactivate a task. Inactive tasks cannot be started or retried.

    Raises:
        TaskNotFoundError: If task does not exist
    """
    task_model = await session.get(TaskModel, task_id)
    if not task_model:
        raise TaskNotFoundError(f"Task {task_id} not found")

    task_model.is_active = is_active

    await session.commit()
    await session.refresh(task_model)

    return TaskDefinition.model_validate(task_model)


async def create_character(session: AsyncSession, character_data: CharacterCreate) -> Character:
    """Create a conversation persona."""
    character_model = CharacterModel(
        id=character_data.id or generate_entity_id(PREFIX_CHARACTER),
        name=character_data.name,
        description=character_data.description,
        personality=dict(character_data.personality),
        speaking_style=character_data.speaking_style,
        relationship_type=character_data.relationship_type,
    )

    session.add(character_model)
    await session.commit()
    await session.refresh(character_model)

    return Character.model_validate(character_model)


async def get_character(session: AsyncSession, character_id: str) -> Character:
    """
    Retrieve a character by ID.

    Raises:
        NotFoundError: If character does not exist
    """
    character_model = await session.get(CharacterModel, character_id)
    if not character_model:
        raise NotFoundError(f"Character {character_id} not found")

    return Character.model_validate(character_model)

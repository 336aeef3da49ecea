"""
Learner profile service.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from kaiwa.errors import LearnerNotFoundError
from kaiwa.models import JLPTLevel, Learner, LearnerCreate, LearnerModel
from kaiwa.utils.ids import PREFIX_LEARNER, generate_entity_id


async def create_learner(session: AsyncSession, learner_data: LearnerCreate) -> Learner:
    """
    Create a learner profile.

    Args:
        session: Database session
        learner_data: Name, proficiency and preferred categories

    Returns:
        Created learner
    """
    learner_model = LearnerModel(
        id=learner_data.id or generate_entity_id(PREFIX_LEARNER),
        name=learner_data.name,
        proficiency=learner_data.proficiency.value,
        preferred_categories=list(learner_data.preferred_categories),
    )

    session.add(learner_model)
    await session.commit()
    await session.refresh(learner_model)

    return Learner.model_validate(learner_model)


async def get_learner(session: AsyncSession, learner_id: str) -> Learner:
    """
    Retrieve a learner by ID.

    Raises:
        LearnerNotFoundError: If learner does not exist
    """
    learner_model = await session.get(LearnerModel, learner_id)
    if not learner_model:
        raise LearnerNotFoundError(f"Learner {learner_id} not found")

    return Learner.model_validate(learner_model)


async def update_learner(
    session: AsyncSession,
    learner_id: str,
    proficiency: JLPTLevel | str | None = None,
    preferred_categories: list[str] | None = None,
) -> Learner:
    """
    Update proficiency and/or preferred categories.

    Raises:
        LearnerNotFoundError: If learner does not exist
    """
    learner_model = await session.get(LearnerModel, learner_id)
    if not learner_model:
        raise LearnerNotFoundError(f"Learner {learner_id} not found")

    if proficiency is not None:
        learner_model.proficiency = JLPTLevel(proficiency).value
    if preferred_categories is not None:
        # New list so the JSON column registers the change
        learner_model.preferred_categories = list(preferred_categories)

    await session.commit()
    await session.refresh(learner_model)

    return Learner.model_validate(learner_model)

"""
ID generation utilities for the conversation engine.
"""

import hashlib
from uuid import uuid4


def generate_entity_id(prefix: str) -> str:
    """
    Generate a unique ID for any entity.

    Args:
        prefix: Entity type prefix (e.g., "task", "att")

    Returns:
        ID like "att-a1b2c3d4"

    Examples:
        >>> id = generate_entity_id("att")
        >>> id.startswith("att-")
        True
        >>> len(id)
        12
    """
    unique_bytes = uuid4().bytes
    hash_digest = hashlib.sha256(unique_bytes).hexdigest()[:8]
    return f"{prefix}-{hash_digest}"


# Common entity prefixes
PREFIX_TASK = "task"
PREFIX_CHARACTER = "char"
PREFIX_LEARNER = "learner"
PREFIX_ATTEMPT = "att"

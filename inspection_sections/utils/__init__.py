"""
Shared utilities for the section answer engine.
"""
import uuid


def generate_id(prefix=None):
    """Generate a UUID-based id for database records.

    Args:
        prefix: Optional prefix for the ID (e.g., 'ans', 'aud')

    Returns:
        String ID like 'ans-<32 hex chars>', or just the hex if no prefix
    """
    unique = uuid.uuid4().hex
    if prefix:
        return f"{prefix}-{unique}"
    return unique

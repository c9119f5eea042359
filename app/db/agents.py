"""Database operations for agents."""

from typing import Optional

from app.core.logging import get_logger
from app.core.schemas_context import AgentConfig
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def get_agent(agent_id: str) -> Optional[AgentConfig]:
    """
    Fetch an agent by ID.

    Args:
        agent_id: Agent UUID string

    Returns:
        AgentConfig or None if no such agent exists

    Raises:
        Exception: If the database query fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("agents")
            .select("id, name, role, description, configuration")
            .eq("id", agent_id)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.error(f"Failed to fetch agent {agent_id}: {e}")
        raise

    if not response.data:
        return None

    return AgentConfig(**response.data[0])

"""Database operations for per-agent context injection configuration."""

from typing import Any, Optional

from app.db.supabase_client import get_supabase


def get_context_config_row(agent_id: str) -> Optional[dict[str, Any]]:
    """Fetch the stored ``context_injection_config`` row for an agent, if any."""
    supabase = get_supabase()
    response = (
        supabase.table("context_injection_config")
        .select("*")
        .eq("agent_id", agent_id)
        .limit(1)
        .execute()
    )
    if response.data:
        return response.data[0]
    return None

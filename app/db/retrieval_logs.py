"""Insert-only audit sink for context retrievals."""

from typing import Any

from app.db.supabase_client import get_supabase


def insert_retrieval_log(row: dict[str, Any]) -> None:
    """Insert one ``context_retrievals`` row.

    Raises:
        Exception: If the insert fails (callers decide whether that matters)
    """
    supabase = get_supabase()
    supabase.table("context_retrievals").insert(row).execute()

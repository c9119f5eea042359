"""Read-only access to the four knowledge stores.

The vector RPCs (``match_agent_documents``, ``match_shared_documents``) return
rows with a cosine ``similarity``; ``search_playbooks`` is a Postgres full-text
search returning a ``ts_rank`` ``relevance``.
"""

from typing import Any, Optional

from app.db.supabase_client import get_supabase


def get_foundation_record(company_id: str) -> Optional[dict[str, Any]]:
    """Fetch the tenant's completed CompanyOS document (``os_data``), if any."""
    supabase = get_supabase()
    response = (
        supabase.table("company_os")
        .select("os_data, version")
        .eq("company_id", company_id)
        .eq("status", "completed")
        .limit(1)
        .execute()
    )
    if response.data:
        return response.data[0].get("os_data") or None
    return None


def match_agent_documents(
    query_embedding: list[float],
    agent_id: str,
    match_threshold: float,
    match_count: int,
) -> list[dict[str, Any]]:
    """Vector search over documents scoped to one agent."""
    supabase = get_supabase()
    response = supabase.rpc(
        "match_agent_documents",
        {
            "query_embedding": query_embedding,
            "match_agent_id": agent_id,
            "match_threshold": match_threshold,
            "match_count": match_count,
        },
    ).execute()
    return response.data or []


def match_shared_documents(
    query_embedding: list[float],
    company_id: str,
    match_threshold: float,
    match_count: int,
) -> list[dict[str, Any]]:
    """Vector search over company-wide documents not tied to an agent."""
    supabase = get_supabase()
    response = supabase.rpc(
        "match_shared_documents",
        {
            "query_embedding": query_embedding,
            "match_company_id": company_id,
            "match_threshold": match_threshold,
            "match_count": match_count,
        },
    ).execute()
    return response.data or []


def search_playbooks(search_query: str, company_id: str, match_count: int) -> list[dict[str, Any]]:
    """Full-text search over completed playbook sections."""
    supabase = get_supabase()
    response = supabase.rpc(
        "search_playbooks",
        {
            "search_query": search_query,
            "match_company_id": company_id,
            "match_count": match_count,
        },
    ).execute()
    return response.data or []

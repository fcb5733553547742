from __future__ import annotations

from functools import lru_cache

from supabase import Client, create_client

from inspection.settings import get_settings


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """
    Get Supabase client singleton instance.

    Raises RuntimeError when SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY are not set,
    so the wizard can run offline until it actually submits.
    """
    settings = get_settings()
    if not settings.supabase_configured:
        raise RuntimeError("Supabase is not configured (SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)")
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
    )

"""
Supabase client factory
"""
from functools import lru_cache
from supabase import create_client, Client

from crm_bridge.config import get_settings

settings = get_settings()


@lru_cache()
def get_supabase_client() -> Client:
    """Shared Supabase client (service role key when configured)"""
    return create_client(
        settings.supabase_url,
        settings.SUPABASE_KEY
    )

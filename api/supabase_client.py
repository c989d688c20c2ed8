import os
from typing import Optional

from supabase import create_client, Client

_client: Optional[Client] = None


def get_supabase() -> Client:
    """Create (lazy) and return the shared Supabase client."""
    global _client
    if _client is None:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not key:
            raise RuntimeError("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY in environment")
        _client = create_client(url, key)
    return _client

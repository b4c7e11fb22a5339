"""
Database client configuration.
Uses Supabase (PostgreSQL) as the candidate record store.

The client is built by the application startup hook rather than at import
time, so importing the app never requires database credentials.
"""

import os
from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")


def create_supabase_admin(url: str | None = None, key: str | None = None) -> Client:
    """
    Admin client for service-level operations (bypasses RLS).

    Raises:
        ValueError: URL or service key missing.
    """
    url = url or SUPABASE_URL
    key = key or SUPABASE_SERVICE_KEY
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment variables")
    return create_client(url, key)

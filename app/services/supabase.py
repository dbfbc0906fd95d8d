"""
Supabase Service — shared async client for the bucket tables and the
record sets the lead insight scans read.

Concurrent first callers share one client; creation happens once.
"""

import asyncio
import logging

from supabase import acreate_client, AsyncClient

from app.config import settings

logger = logging.getLogger(__name__)

_client: AsyncClient | None = None
_client_lock = asyncio.Lock()


def supabase_configured() -> bool:
    """True when both the project URL and service key are set."""
    return bool(settings.supabase_url and settings.supabase_service_key)


async def get_supabase_client() -> AsyncClient:
    """Get or create the async Supabase client.

    Raises:
        RuntimeError: SUPABASE_URL or SUPABASE_SERVICE_KEY is missing.
    """
    global _client
    if _client is not None:
        return _client

    async with _client_lock:
        if _client is None:
            if not supabase_configured():
                raise RuntimeError(
                    "Supabase analytics store needs SUPABASE_URL and SUPABASE_SERVICE_KEY"
                )
            try:
                _client = await acreate_client(
                    settings.supabase_url, settings.supabase_service_key
                )
                logger.info("Supabase client ready for analytics store")
            except Exception as e:
                logger.error("Failed to create Supabase client: %s", e)
                raise
    return _client


async def close_supabase() -> None:
    """Drop the shared client on shutdown."""
    global _client
    _client = None

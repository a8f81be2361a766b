"""
Supabase Service — async client behind the payment store.

One client per process, created on first use and dropped on shutdown.
Only PaymentStore talks to it.
"""

import logging

from supabase import acreate_client, AsyncClient

from app.config import settings

logger = logging.getLogger(__name__)

_client: AsyncClient | None = None


async def get_supabase_client() -> AsyncClient:
    """Get or create the payment store's Supabase client."""
    global _client
    if _client is None:
        try:
            _client = await acreate_client(
                settings.supabase_url, settings.supabase_service_key
            )
        except Exception as e:
            logger.error(
                "Payment store unavailable: could not connect to %s: %s",
                settings.supabase_url,
                e,
            )
            raise
        logger.info("Connected payment store to %s", settings.supabase_url)
    return _client


async def close_supabase() -> None:
    """Drop the client on shutdown; the next call reconnects."""
    global _client
    if _client is not None:
        logger.info("Closing payment store client")
        _client = None

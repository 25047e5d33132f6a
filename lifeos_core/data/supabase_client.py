# =============================================================================
# lifeos_core/data/supabase_client.py
# Supabase Client Configuration
# Builds the client used by the remote store and the auth provider
# =============================================================================

from __future__ import annotations
from typing import Optional
import logging

from supabase import Client, ClientOptions, create_client

from lifeos_core.config import Settings

logger = logging.getLogger(__name__)


def get_supabase_client(settings: Settings) -> Client:
    """
    Initialize and return a Supabase client.

    Every PostgREST call made through the returned client is bounded by
    settings.request_timeout; expiry surfaces as an httpx timeout, which the
    remote store maps to a retryable NetworkError.

    Raises:
        ConfigurationError: if the URL or key is missing
    """
    settings.require_remote()

    options = ClientOptions(
        postgrest_client_timeout=settings.request_timeout,
        auto_refresh_token=True,
        persist_session=False,
    )
    client = create_client(settings.supabase_url, settings.supabase_key, options=options)
    logger.info(f"Supabase client created for {settings.supabase_url[:40]}")
    return client


def close_supabase_client(client: Optional[Client]) -> None:
    """
    Close the underlying HTTP session of a Supabase client.

    The PostgREST sub-client keeps an httpx session open; closing it on
    shutdown avoids leaking sockets in long-running processes.
    """
    if client is None:
        return
    try:
        client.postgrest.session.close()
    except AttributeError:
        logger.debug("Supabase client has no closable PostgREST session")

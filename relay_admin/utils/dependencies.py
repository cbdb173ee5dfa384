"""FastAPI dependency providers for external clients.

Routes never build clients themselves: they ``Depends`` on one of the
providers below, and tests swap any of them through
``app.dependency_overrides``.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator

from fastapi import Depends
from supabase import AsyncClient, acreate_client

from relay_admin import SUPABASE_KEY, SUPABASE_URL
from relay_admin.errors import ConfigurationError
from relay_admin.settings import Settings, get_settings
from relay_admin.utils.audit import AuditStore
from relay_admin.utils.cache import TTLCache
from relay_admin.utils.helpdesk import ZendeskClient
from relay_admin.utils.media_service import MediaModerationClient
from relay_admin.utils.moderation import ModerationOrchestrator
from relay_admin.utils.nip86 import RelayRpcClient
from relay_admin.utils.nostr import NostrSigner
from relay_admin.utils.realness import RealnessClient
from relay_admin.utils.relay_socket import RelayEventPublisher
from relay_admin.utils.summaries import UserSummarizer
from relay_admin.utils.verification import Verifier

_cached_client: AsyncClient | None = None
_cached_loop: asyncio.AbstractEventLoop | None = None

# check-result lookups are cached process-wide; moderate() evicts the hash.
check_result_cache: TTLCache[str, Any] = TTLCache()
# User summaries are cached per pubkey across requests.
summary_cache: TTLCache[str, Any] = TTLCache(3600)


async def _get_cached_client() -> AsyncClient:
    """Return a cached Supabase async client tied to the current event loop.

    A client created on one loop cannot do I/O on another, so the cache is
    keyed on the running loop rather than the process.
    """
    global _cached_client, _cached_loop

    current_loop = asyncio.get_running_loop()
    if (
        _cached_client is None
        or _cached_loop is None
        or _cached_loop is not current_loop
        or _cached_loop.is_closed()
    ):
        _cached_client = await acreate_client(SUPABASE_URL, SUPABASE_KEY)  # type: ignore[arg-type]
        _cached_loop = current_loop
    return _cached_client


async def get_supabase_async() -> AsyncGenerator[AsyncClient, None]:
    """Yield the audit store client.

    Tests that set ``SUPABASE_URL`` to a ``https://test.`` endpoint receive
    the in-memory stub from ``tests/supabase_stub.py``.
    """
    if SUPABASE_URL and SUPABASE_URL.startswith("https://test."):
        from importlib import import_module

        try:
            SupabaseStub = getattr(import_module("tests.supabase_stub"), "SupabaseStub")
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise RuntimeError(
                "Supabase test stub not found – ensure tests package contains supabase_stub.py"
            ) from exc
        yield SupabaseStub()  # type: ignore[misc]
        return

    if not SUPABASE_URL or not SUPABASE_KEY:
        raise ConfigurationError("Database not configured")
    yield await _get_cached_client()


async def get_signer(settings: Settings = Depends(get_settings)) -> NostrSigner:
    return await NostrSigner.from_credential(settings.nostr_nsec)


async def get_rpc_client(
    signer: NostrSigner = Depends(get_signer),
    settings: Settings = Depends(get_settings),
) -> RelayRpcClient:
    return RelayRpcClient.from_settings(signer, settings)


async def get_publisher(settings: Settings = Depends(get_settings)) -> RelayEventPublisher:
    return RelayEventPublisher(
        settings.relay_url,
        publish_timeout=settings.publish_timeout_seconds,
        query_timeout=settings.query_timeout_seconds,
    )


async def get_media_client(settings: Settings = Depends(get_settings)) -> MediaModerationClient:
    return MediaModerationClient.from_settings(settings, cache=check_result_cache)


async def get_audit_store(supabase: AsyncClient = Depends(get_supabase_async)) -> AuditStore:
    return AuditStore(supabase)


async def get_verifier(
    rpc: RelayRpcClient = Depends(get_rpc_client),
    publisher: RelayEventPublisher = Depends(get_publisher),
    media: MediaModerationClient = Depends(get_media_client),
    settings: Settings = Depends(get_settings),
) -> Verifier:
    return Verifier(rpc, publisher, media, delay=settings.verify_delay_seconds)


async def get_orchestrator(
    signer: NostrSigner = Depends(get_signer),
    rpc: RelayRpcClient = Depends(get_rpc_client),
    publisher: RelayEventPublisher = Depends(get_publisher),
    media: MediaModerationClient = Depends(get_media_client),
    audit: AuditStore = Depends(get_audit_store),
    verifier: Verifier = Depends(get_verifier),
    settings: Settings = Depends(get_settings),
) -> ModerationOrchestrator:
    return ModerationOrchestrator(
        signer=signer,
        rpc=rpc,
        publisher=publisher,
        media=media,
        audit=audit,
        verifier=verifier,
        delete_strategy=settings.delete_strategy,
        concurrency=settings.fanout_concurrency,
        event_limit=settings.fanout_event_limit,
    )


async def get_helpdesk(settings: Settings = Depends(get_settings)) -> ZendeskClient:
    return ZendeskClient.from_settings(settings)


async def get_realness_client(settings: Settings = Depends(get_settings)) -> RealnessClient:
    return RealnessClient.from_settings(settings)


async def get_summarizer(settings: Settings = Depends(get_settings)) -> UserSummarizer:
    return UserSummarizer(settings.anthropic_api_key, settings.summary_model, summary_cache)

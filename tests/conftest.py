from __future__ import annotations

"""Pytest fixtures for FastAPI integration tests.

All external services (Supabase, the relay's NIP-86 endpoint and WebSocket,
the media moderation service, Zendesk) are stubbed so we can exercise the
request pipeline end-to-end without network round-trips. Shared objects live
in ``tests/helpers.py`` so test modules import a single app instance.
"""

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import List

import httpx
import pytest
from starlette.testclient import TestClient

# Ensure project root on PYTHONPATH so `import relay_admin` works when pytest is run
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tests import supabase_stub  # noqa: E402
from tests.helpers import FakeMedia, FakePublisher, FakeRelayRpc, app, client, limiter  # noqa: E402
from relay_admin.utils import dependencies as deps  # noqa: E402
from relay_admin.utils.credentials import LiteralCredential  # noqa: E402
from relay_admin.utils.helpdesk import ZendeskClient  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_state():
    limiter.reset()
    supabase_stub.reset()
    deps.check_result_cache.clear()
    deps.summary_cache.clear()
    yield
    app.dependency_overrides.clear()
    limiter.reset()


@pytest.fixture()
def api_client() -> TestClient:  # noqa: D401 – simple alias
    return client


@pytest.fixture()
def relay():
    """Install fakes for every outbound relay/media dependency."""
    fakes = SimpleNamespace(rpc=FakeRelayRpc(), publisher=FakePublisher(), media=FakeMedia())
    app.dependency_overrides[deps.get_rpc_client] = lambda: fakes.rpc
    app.dependency_overrides[deps.get_publisher] = lambda: fakes.publisher
    app.dependency_overrides[deps.get_media_client] = lambda: fakes.media
    yield fakes


@pytest.fixture()
def zendesk_requests():
    """Route Zendesk API calls to an httpx MockTransport and record them."""
    seen: List[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ticket": {"id": 1}})

    zendesk = ZendeskClient(
        "divine",
        "bot@divine.video",
        LiteralCredential("zd-token"),
        field_action_status=1001,
        field_action_requested=1002,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(_handler)),
    )
    app.dependency_overrides[deps.get_helpdesk] = lambda: zendesk
    yield seen

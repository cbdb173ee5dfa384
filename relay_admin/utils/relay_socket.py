"""Relay WebSocket client: publish one event and wait for its OK, or run a REQ until EOSE.

Every operation opens a fresh connection and is a single awaited coroutine
bounded by ``asyncio.wait_for``; the three ways a publish can end badly
(timeout, rejection, early close) surface as distinct exceptions.
"""

from __future__ import annotations

import asyncio
import json
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, List

import aiohttp
from aiohttp import ClientTimeout, WSMsgType

from relay_admin.errors import ConfigurationError, UpstreamError
from relay_admin.utils.logger import logger
from relay_admin.utils.nostr import NostrEvent

__all__ = [
    "PublishAck",
    "QueryResult",
    "PublishError",
    "PublishTimeout",
    "PublishRejected",
    "PublishConnectionClosed",
    "PublishConnectionError",
    "RelayEventPublisher",
]


class PublishError(UpstreamError):
    """Base class for publication failures."""


class PublishTimeout(PublishError):
    def __init__(self, reason: str = "Timeout connecting to relay"):
        super().__init__(reason, 504)


class PublishRejected(PublishError):
    def __init__(self, reason: str = "Relay rejected event"):
        super().__init__(reason)


class PublishConnectionClosed(PublishError):
    def __init__(self, reason: str = "Connection closed before OK received"):
        super().__init__(reason)


class PublishConnectionError(PublishError):
    pass


@dataclass
class PublishAck:
    event_id: str
    message: str = ""


@dataclass
class QueryResult:
    events: List[NostrEvent] = field(default_factory=list)
    complete: bool = True


Connector = Callable[[str], AsyncContextManager[Any]]


@asynccontextmanager
async def aiohttp_connect(url: str) -> AsyncIterator[aiohttp.ClientWebSocketResponse]:
    async with aiohttp.ClientSession(timeout=ClientTimeout(total=None, connect=10)) as session:
        async with session.ws_connect(url) as ws:
            yield ws


def _frame(data: Any) -> List[Any] | None:
    try:
        frame = json.loads(data)
    except (TypeError, ValueError):
        return None
    return frame if isinstance(frame, list) and frame else None


class RelayEventPublisher:
    def __init__(
        self,
        relay_url: str,
        *,
        publish_timeout: float = 10.0,
        query_timeout: float = 5.0,
        connector: Connector | None = None,
    ):
        if not relay_url:
            raise ConfigurationError("RELAY_URL not configured")
        self.relay_url = relay_url
        self.publish_timeout = publish_timeout
        self.query_timeout = query_timeout
        self._connect = connector or aiohttp_connect

    async def publish(self, event: NostrEvent) -> PublishAck:
        try:
            ack = await asyncio.wait_for(self._publish(event), self.publish_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("relay.publish_timeout", extra={"event_id": event.get("id")})
            raise PublishTimeout() from exc
        logger.info("relay.published", extra={"event_id": ack.event_id, "kind": event.get("kind")})
        return ack

    async def _publish(self, event: NostrEvent) -> PublishAck:
        try:
            async with self._connect(self.relay_url) as ws:
                await ws.send_str(json.dumps(["EVENT", event], separators=(",", ":"), ensure_ascii=False))
                async for msg in ws:
                    if msg.type == WSMsgType.ERROR:
                        break
                    if msg.type != WSMsgType.TEXT:
                        continue
                    frame = _frame(msg.data)
                    if not frame or frame[0] != "OK" or len(frame) < 3 or frame[1] != event["id"]:
                        continue
                    message = frame[3] if len(frame) > 3 and frame[3] else ""
                    if frame[2] is True:
                        return PublishAck(event["id"], message)
                    logger.warning("relay.publish_rejected", extra={"event_id": event["id"], "relay_message": message})
                    raise PublishRejected(message or "Relay rejected event")
        except (aiohttp.ClientError, OSError) as exc:
            raise PublishConnectionError(f"Could not connect to relay: {exc}") from exc
        raise PublishConnectionClosed()

    async def query(self, filter_: Dict[str, Any], timeout: float | None = None) -> QueryResult:
        """Collect stored events matching ``filter_`` until EOSE.

        On timeout the events received so far come back with ``complete=False``.
        """
        result = QueryResult(complete=False)
        sub_id = "query-" + os.urandom(4).hex()
        try:
            result.complete = await asyncio.wait_for(
                self._query(filter_, sub_id, result.events),
                timeout if timeout is not None else self.query_timeout,
            )
        except asyncio.TimeoutError:
            logger.info("relay.query_timeout", extra={"sub_id": sub_id, "received": len(result.events)})
        return result

    async def _query(self, filter_: Dict[str, Any], sub_id: str, sink: List[NostrEvent]) -> bool:
        try:
            async with self._connect(self.relay_url) as ws:
                await ws.send_str(json.dumps(["REQ", sub_id, filter_]))
                async for msg in ws:
                    if msg.type == WSMsgType.ERROR:
                        break
                    if msg.type != WSMsgType.TEXT:
                        continue
                    frame = _frame(msg.data)
                    if not frame or len(frame) < 2 or frame[1] != sub_id:
                        continue
                    if frame[0] == "EVENT" and len(frame) > 2:
                        sink.append(frame[2])
                    elif frame[0] == "EOSE":
                        await ws.send_str(json.dumps(["CLOSE", sub_id]))
                        return True
        except (aiohttp.ClientError, OSError) as exc:
            raise UpstreamError(f"Relay query failed: {exc}") from exc
        return False

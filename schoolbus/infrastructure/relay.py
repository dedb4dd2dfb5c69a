"""
Cross-process change relay over Redis pub/sub.

Each process publishes its committed changes to one channel, stamped with
its origin id, and feeds changes from *other* processes into its local
hub.  Local echoes are dropped by origin, so a change reaches local
subscribers exactly once (directly from ``RealtimeStore``).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace

import redis.asyncio as aioredis

from schoolbus.config import settings
from schoolbus.realtime.hub import ChangeEvent, SubscriptionHub

logger = logging.getLogger(__name__)


class RedisChangeRelay:
    def __init__(
        self,
        client: aioredis.Redis,
        hub: SubscriptionHub,
        channel: str | None = None,
        origin: str | None = None,
    ):
        self.redis = client
        self.hub = hub
        self.channel = channel or settings.realtime_channel
        self.origin = origin or uuid.uuid4().hex
        self._pending: set[asyncio.Task] = set()
        self._listener: asyncio.Task | None = None
        self._stop = asyncio.Event()

    # ── Outbound ──────────────────────────────────────────────────────

    def publish(self, event: ChangeEvent) -> None:
        """Store publisher hook: fire-and-forget, never blocks the commit path."""
        task = asyncio.get_running_loop().create_task(self._send(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, event: ChangeEvent) -> None:
        try:
            await self.redis.publish(
                self.channel, replace(event, origin=self.origin).to_json()
            )
        except Exception:
            logger.exception("Relay publish failed for %s %s", event.collection, event.doc_id)

    # ── Inbound ───────────────────────────────────────────────────────

    def handle_message(self, data: str | bytes) -> bool:
        """Feed one raw message into the hub.  Returns False for echoes/garbage."""
        try:
            event = ChangeEvent.from_json(data)
        except (ValueError, KeyError, TypeError):
            logger.warning("Dropping malformed relay message")
            return False
        if event.origin == self.origin:
            return False
        self.hub.publish(event)
        return True

    async def _listen(self) -> None:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("Change relay listening on %s (origin %s)", self.channel, self.origin)
        try:
            while not self._stop.is_set():
                try:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=1.0
                    )
                except Exception:
                    logger.exception("Relay receive failed; retrying")
                    try:
                        await asyncio.wait_for(self._stop.wait(), timeout=1.0)
                    except asyncio.TimeoutError:
                        pass
                    continue
                if message and message.get("type") == "message":
                    self.handle_message(message["data"])
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    def start(self) -> None:
        self._stop.clear()
        self._listener = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        self._stop.set()
        if self._listener is not None:
            try:
                await asyncio.wait_for(self._listener, timeout=5.0)
            except asyncio.TimeoutError:
                self._listener.cancel()
            except Exception:
                logger.exception("Relay listener exited with error")
            self._listener = None
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

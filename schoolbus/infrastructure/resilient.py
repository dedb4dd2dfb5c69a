"""
Read-through access with offline fallback.

Reads go to the real store first.  A successful read refreshes the
last-known snapshot; ``StoreUnavailable`` is answered from the snapshot
instead of failing the caller.  "Not found" from a reachable store is
returned as is: the fallback only covers unreachability.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from .snapshots import SnapshotStore
from schoolbus.domain.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class ResilientReader:
    def __init__(self, snapshots: SnapshotStore):
        self.snapshots = snapshots

    async def get(
        self,
        collection: str,
        doc_id: str,
        fetch: Callable[[], Awaitable[Optional[dict]]],
    ) -> Optional[dict]:
        try:
            doc = await fetch()
        except StoreUnavailable:
            logger.warning("Store unavailable; serving %s/%s from snapshot", collection, doc_id)
            return self.snapshots.get(collection, doc_id)
        if doc is not None:
            self.snapshots.put(collection, doc)
        return doc

    async def query(
        self,
        collection: str,
        filters: dict[str, Any],
        fetch: Callable[[], Awaitable[list[dict]]],
        limit: int | None = None,
    ) -> list[dict]:
        try:
            docs = await fetch()
        except StoreUnavailable:
            logger.warning(
                "Store unavailable; serving %s query %s from snapshot", collection, filters
            )
            return self.snapshots.query(collection, filters, limit)
        self.snapshots.put_many(collection, docs)
        return docs

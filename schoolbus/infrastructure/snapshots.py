"""
Last-known snapshot stores used as the offline fallback.

A snapshot store keeps plain documents per collection.  The resilient
reader writes every successful read through to it and serves from it
when the real store is unreachable.  ``JsonFileSnapshotStore`` can be
pre-seeded from a file so a fresh process still has something to show.

File format::

    {"routes": [{"id": "route1", ...}], "students": [...], ...}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

logger = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    def get(self, collection: str, doc_id: str) -> Optional[dict]: ...

    def query(
        self, collection: str, filters: dict[str, Any], limit: int | None = None
    ) -> list[dict]: ...

    def put(self, collection: str, document: dict) -> None: ...

    def put_many(self, collection: str, documents: Iterable[dict]) -> None: ...


def _matches(doc: dict, filters: dict[str, Any]) -> bool:
    """Equality, or membership when the filter value is a list/tuple/set."""
    for key, expected in filters.items():
        value = doc.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class InMemorySnapshotStore:
    def __init__(self, seed: dict[str, list[dict]] | None = None):
        self._docs: dict[str, dict[str, dict]] = {}
        for collection, docs in (seed or {}).items():
            self.put_many(collection, docs)

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        return self._docs.get(collection, {}).get(doc_id)

    def query(
        self, collection: str, filters: dict[str, Any], limit: int | None = None
    ) -> list[dict]:
        docs = [d for d in self._docs.get(collection, {}).values() if _matches(d, filters)]
        return docs[:limit] if limit is not None else docs

    def put(self, collection: str, document: dict) -> None:
        self._docs.setdefault(collection, {})[document["id"]] = document

    def put_many(self, collection: str, documents: Iterable[dict]) -> None:
        for doc in documents:
            self.put(collection, doc)


class JsonFileSnapshotStore(InMemorySnapshotStore):
    """In-memory store seeded from (and flushable to) a JSON file."""

    def __init__(self, path: Path | str):
        self._path = Path(path)
        seed: dict[str, list[dict]] = {}
        if self._path.exists():
            try:
                raw = json.loads(self._path.read_text())
            except (json.JSONDecodeError, OSError):
                logger.warning("Unreadable snapshot file %s; starting empty", self._path)
                raw = {}
            if isinstance(raw, dict):
                seed = {k: v for k, v in raw.items() if isinstance(v, list)}
        super().__init__(seed)
        logger.info(
            "Loaded fallback snapshot from %s (%d collections)", self._path, len(seed)
        )

    def flush(self) -> None:
        payload = {c: list(docs.values()) for c, docs in self._docs.items()}
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True))
        tmp.replace(self._path)

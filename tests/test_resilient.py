"""Offline fallback: snapshot stores and the resilient reader."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from schoolbus.domain.errors import StoreUnavailable
from schoolbus.infrastructure.resilient import ResilientReader
from schoolbus.infrastructure.snapshots import InMemorySnapshotStore, JsonFileSnapshotStore


class TestSnapshotStores:
    def test_query_equality_and_membership(self):
        store = InMemorySnapshotStore(
            {
                "trips": [
                    {"id": "t1", "driver_id": "d1", "status": "IN_PROGRESS"},
                    {"id": "t2", "driver_id": "d1", "status": "COMPLETED"},
                    {"id": "t3", "driver_id": "d2", "status": "IN_PROGRESS"},
                ]
            }
        )
        assert [d["id"] for d in store.query("trips", {"driver_id": "d1", "status": "IN_PROGRESS"})] == ["t1"]
        both = store.query("trips", {"status": ["IN_PROGRESS", "COMPLETED"]})
        assert {d["id"] for d in both} == {"t1", "t2", "t3"}
        assert len(store.query("trips", {}, limit=2)) == 2
        assert store.query("missing", {}) == []

    def test_json_file_load_and_flush(self, tmp_path):
        path = tmp_path / "snapshot.json"
        path.write_text(json.dumps({"routes": [{"id": "r1", "name": "North"}], "junk": 3}))

        store = JsonFileSnapshotStore(path)
        assert store.get("routes", "r1")["name"] == "North"
        assert store.get("junk", "x") is None

        store.put("users", {"id": "u1", "name": "Una"})
        store.flush()

        reloaded = JsonFileSnapshotStore(path)
        assert reloaded.get("users", "u1")["name"] == "Una"
        assert reloaded.get("routes", "r1") is not None

    def test_unreadable_file_starts_empty(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        store = JsonFileSnapshotStore(path)
        assert store.query("routes", {}) == []


class TestResilientReader:
    @pytest.mark.asyncio
    async def test_successful_read_refreshes_snapshot(self):
        reader = ResilientReader(InMemorySnapshotStore())

        async def fetch():
            return {"id": "r1", "name": "North"}

        assert await reader.get("routes", "r1", fetch) == {"id": "r1", "name": "North"}
        assert reader.snapshots.get("routes", "r1") == {"id": "r1", "name": "North"}

    @pytest.mark.asyncio
    async def test_unavailable_serves_snapshot(self):
        reader = ResilientReader(
            InMemorySnapshotStore({"routes": [{"id": "r1", "driver_id": "d1"}]})
        )

        async def down():
            raise StoreUnavailable("connection refused")

        assert (await reader.get("routes", "r1", down))["driver_id"] == "d1"
        assert [d["id"] for d in await reader.query("routes", {"driver_id": "d1"}, down)] == ["r1"]

    @pytest.mark.asyncio
    async def test_not_found_is_not_masked_by_snapshot(self):
        reader = ResilientReader(InMemorySnapshotStore({"routes": [{"id": "r1"}]}))

        async def missing():
            return None

        assert await reader.get("routes", "r1", missing) is None

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        reader = ResilientReader(InMemorySnapshotStore({"routes": [{"id": "r1"}]}))

        async def broken():
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            await reader.get("routes", "r1", broken)


class TestDirectoryFallback:
    @pytest.mark.asyncio
    async def test_directory_serves_last_known_route_when_store_is_down(self, core):
        route = await core.directory.route_for_driver("driver1")
        assert route.id == "route1"

        with patch.object(core.store, "read", side_effect=StoreUnavailable("down")):
            offline = await core.directory.route_for_driver("driver1")
            name = await core.directory.display_name("driver1")

        assert offline.id == "route1"
        assert offline.student_ids == route.student_ids
        # never read while online, so falls back to the raw id
        assert name == "driver1"

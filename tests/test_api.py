"""
Integration tests for the REST API endpoints.

Drives the FastAPI app over ``httpx.ASGITransport`` against the same
SQLite-backed core the service tests use.  Identity is passed as the
``X-User-Id`` / ``X-User-Role`` headers.
"""

from __future__ import annotations

import pytest

from schoolbus.domain.entities import Actor
from schoolbus.domain.enums import UserRole
from tests.conftest import ADMIN, DRIVER, DRIVER_NO_ROUTE, PARENT1, PARENT2, headers

OTHER_ADMIN = Actor("admin2", UserRole.ADMIN)


async def _start(client, actor=DRIVER, **body) -> dict:
    resp = await client.post("/api/v1/trips", json=body, headers=headers(actor))
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestIdentity:
    @pytest.mark.asyncio
    async def test_missing_headers(self, client):
        resp = await client.post("/api/v1/trips", json={})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_role(self, client):
        resp = await client.post(
            "/api/v1/trips", json={}, headers={"X-User-Id": "driver1", "X-User-Role": "pilot"}
        )
        assert resp.status_code == 401


class TestTripEndpoints:
    @pytest.mark.asyncio
    async def test_start_trip(self, client):
        trip = await _start(client)
        assert trip["status"] == "IN_PROGRESS"
        assert trip["driver_id"] == "driver1"
        assert trip["route_id"] == "route1"
        assert trip["current_location"] == {"latitude": 40.05, "longitude": -73.05}
        assert trip["version"] >= 1

    @pytest.mark.asyncio
    async def test_admin_starts_for_own_driver(self, client):
        trip = await _start(client, ADMIN, driver_id="driver1")
        assert trip["admin_id"] == "admin1"

    @pytest.mark.asyncio
    async def test_foreign_admin_cannot_start(self, client):
        resp = await client.post(
            "/api/v1/trips", json={"driver_id": "driver1"}, headers=headers(OTHER_ADMIN)
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_second_start_conflicts(self, client):
        first = await _start(client)
        resp = await client.post("/api/v1/trips", json={}, headers=headers(DRIVER))
        assert resp.status_code == 409
        assert first["id"] in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_driver_without_route(self, client):
        resp = await client.post("/api/v1/trips", json={}, headers=headers(DRIVER_NO_ROUTE))
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_get_unknown_trip(self, client):
        resp = await client.get("/api/v1/trips/nope", headers=headers(DRIVER))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_parent_may_watch_but_not_operate(self, client):
        trip = await _start(client)
        assert (await client.get(f"/api/v1/trips/{trip['id']}", headers=headers(PARENT1))).status_code == 200

        resp = await client.post(f"/api/v1/trips/{trip['id']}/end", headers=headers(PARENT1))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_end_then_end_again(self, client):
        trip = await _start(client)
        resp = await client.post(f"/api/v1/trips/{trip['id']}/end", headers=headers(DRIVER))
        assert resp.status_code == 200
        assert resp.json()["status"] == "COMPLETED"
        assert resp.json()["current_location"] is None

        again = await client.post(f"/api/v1/trips/{trip['id']}/end", headers=headers(DRIVER))
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_cancel_requires_reason(self, client):
        trip = await _start(client)
        url = f"/api/v1/trips/{trip['id']}/cancel"
        assert (await client.post(url, json={"reason": ""}, headers=headers(ADMIN))).status_code == 422

        resp = await client.post(url, json={"reason": "Flat tyre"}, headers=headers(ADMIN))
        assert resp.status_code == 200
        assert resp.json()["status"] == "CANCELLED"
        assert resp.json()["cancel_reason"] == "Flat tyre"
        assert resp.json()["closed_by"] == "admin1"

    @pytest.mark.asyncio
    async def test_approaching_notifies_parents(self, client):
        trip = await _start(client)
        resp = await client.post(
            f"/api/v1/trips/{trip['id']}/approaching", headers=headers(DRIVER)
        )
        assert resp.status_code == 200
        assert len(resp.json()["notification_ids"]) == 2


class TestBoardingEndpoints:
    @pytest.mark.asyncio
    async def test_board_and_exit(self, client):
        trip = await _start(client)
        base = f"/api/v1/trips/{trip['id']}/students/s1"

        board = await client.post(f"{base}/board", headers=headers(DRIVER))
        assert board.json() == {"trip_id": trip["id"], "student_id": "s1", "state": "ONBOARD", "changed": True}

        repeat = await client.post(f"{base}/board", headers=headers(DRIVER))
        assert repeat.json()["changed"] is False

        exited = await client.post(f"{base}/exit", headers=headers(DRIVER))
        assert exited.json()["state"] == "EXITED"

        current = (await client.get(f"/api/v1/trips/{trip['id']}", headers=headers(DRIVER))).json()
        assert current["students_onboard"] == []
        assert current["students_exited"] == ["s1"]

    @pytest.mark.asyncio
    async def test_student_not_on_route(self, client):
        trip = await _start(client)
        resp = await client.post(
            f"/api/v1/trips/{trip['id']}/students/s3/board", headers=headers(DRIVER)
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_student(self, client):
        trip = await _start(client)
        resp = await client.post(
            f"/api/v1/trips/{trip['id']}/students/ghost/board", headers=headers(DRIVER)
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_behavior_report(self, client):
        trip = await _start(client)
        url = f"/api/v1/trips/{trip['id']}/behavior-reports"
        body = {"student_id": "s2", "type": "BULLYING", "description": "Pushing in line"}

        assert (await client.post(url, json=body, headers=headers(ADMIN))).status_code == 403

        resp = await client.post(url, json=body, headers=headers(DRIVER))
        assert resp.status_code == 201
        assert resp.json()["type"] == "BULLYING"
        assert resp.json()["driver_id"] == "driver1"

        parent_inbox = await client.get("/api/v1/notifications", headers=headers(PARENT2))
        assert [n["title"] for n in parent_inbox.json()] == ["Behavior Notification"]


class TestNotificationEndpoints:
    @pytest.mark.asyncio
    async def test_list_read_and_read_all(self, client):
        trip = await _start(client)
        await client.post(f"/api/v1/trips/{trip['id']}/students/s1/board", headers=headers(DRIVER))
        await client.post(f"/api/v1/trips/{trip['id']}/students/s1/exit", headers=headers(DRIVER))

        inbox = (await client.get("/api/v1/notifications", headers=headers(PARENT1))).json()
        assert {n["title"] for n in inbox} == {"Student Boarded", "Student Dropped Off"}

        first = inbox[0]["id"]
        resp = await client.post(f"/api/v1/notifications/{first}/read", headers=headers(PARENT1))
        assert resp.json()["read"] is True

        stranger = await client.post(f"/api/v1/notifications/{first}/read", headers=headers(PARENT2))
        assert stranger.status_code == 404

        resp = await client.post("/api/v1/notifications/read-all", headers=headers(PARENT1))
        assert resp.json() == {"updated": 1}

        unread = await client.get(
            "/api/v1/notifications", params={"unread_only": True}, headers=headers(PARENT1)
        )
        assert unread.json() == []


class TestPositionsAndAdmin:
    @pytest.mark.asyncio
    async def test_driver_reports_position(self, client, positions):
        resp = await client.post(
            "/api/v1/positions", json={"latitude": 40.3, "longitude": -73.4}, headers=headers(DRIVER)
        )
        assert resp.status_code == 204
        assert positions.positions["driver1"].latitude == 40.3

    @pytest.mark.asyncio
    async def test_only_drivers_report_positions(self, client):
        resp = await client.post(
            "/api/v1/positions", json={"latitude": 40.3, "longitude": -73.4}, headers=headers(PARENT1)
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_health(self, client):
        await _start(client)
        resp = await client.get("/api/v1/admin/health")
        body = resp.json()
        assert body["status"] == "ok"
        assert body["active_samplers"] == 1
        # the sampler watches its own trip
        assert body["subscribers"] == 1


class TestStreamEndpoint:
    @pytest.mark.asyncio
    async def test_requires_exactly_one_filter(self, client):
        resp = await client.get("/api/v1/stream", headers=headers(ADMIN))
        assert resp.status_code == 400

        resp = await client.get(
            "/api/v1/stream",
            params={"trip_id": "t1", "admin_id": "admin1"},
            headers=headers(ADMIN),
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_foreign_admin_view_forbidden(self, client):
        resp = await client.get(
            "/api/v1/stream", params={"admin_id": "admin1"}, headers=headers(OTHER_ADMIN)
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_other_users_notifications_forbidden(self, client):
        resp = await client.get(
            "/api/v1/stream",
            params={"recipient_user_id": "parent1"},
            headers=headers(PARENT2),
        )
        assert resp.status_code == 403

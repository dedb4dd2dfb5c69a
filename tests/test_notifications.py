"""Notification dispatcher: addressing, wording, isolation and read state."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from schoolbus.domain.enums import BehaviorType, NotificationType
from schoolbus.domain.errors import NotificationNotFound, StoreUnavailable
from schoolbus.domain.events import (
    ApproachingStudent,
    BehaviorReported,
    BusApproaching,
    LocationStale,
    StudentOnboard,
    TripStarted,
)
from schoolbus.services.notifications import NotificationDispatcher
from tests.conftest import ADMIN, PARENT1, PARENT2


def _behavior(kind: BehaviorType) -> BehaviorReported:
    return BehaviorReported(
        trip_id="t1",
        driver_id="driver1",
        driver_name="Dana Driver",
        admin_id="admin1",
        student_id="s1",
        student_name="Sam One",
        parent_id="parent1",
        behavior_type=kind,
    )


class TestEmit:
    @pytest.mark.asyncio
    async def test_trip_started_goes_to_admin_only(self, core):
        ids = await core.notifications.emit(
            TripStarted("t1", "driver1", "Dana Driver", "admin1")
        )
        assert len(ids) == 1
        note = (await core.notifications.list_for(ADMIN))[0]
        assert note.title == "Trip Started"
        assert note.recipient_user_id == "admin1"
        assert not note.read

    @pytest.mark.asyncio
    async def test_behavior_positive_vs_negative(self, core):
        assert len(await core.notifications.emit(_behavior(BehaviorType.POSITIVE))) == 1
        assert len(await core.notifications.emit(_behavior(BehaviorType.MISCONDUCT))) == 2

    @pytest.mark.asyncio
    async def test_bus_approaching_one_per_parent(self, core):
        event = BusApproaching(
            trip_id="t1",
            driver_id="driver1",
            route_id="route1",
            students=(
                ApproachingStudent("s1", "Sam One", "parent1"),
                ApproachingStudent("s2", "Sky Two", "parent2"),
                ApproachingStudent("s9", "No Parent", None),
            ),
        )
        ids = await core.notifications.emit(event)
        assert len(ids) == 2
        assert len(await core.notifications.list_for(PARENT1)) == 1
        assert len(await core.notifications.list_for(PARENT2)) == 1

    @pytest.mark.asyncio
    async def test_location_stale_is_emergency(self, core):
        await core.notifications.emit(LocationStale("t1", "driver1", "admin1", 5))
        note = (await core.notifications.list_for(ADMIN))[0]
        assert note.type == NotificationType.EMERGENCY

    @pytest.mark.asyncio
    async def test_missing_parent_writes_nothing(self, core):
        ids = await core.notifications.emit(
            StudentOnboard("t1", "driver1", "s9", "No Parent", None)
        )
        assert ids == []

    @pytest.mark.asyncio
    async def test_unknown_event_raises(self, core):
        with pytest.raises(TypeError):
            await core.notifications.emit(object())

    @pytest.mark.asyncio
    async def test_one_failed_recipient_does_not_block_others(self, core):
        dispatcher: NotificationDispatcher = core.notifications
        original = dispatcher._write
        calls = []

        async def flaky(draft):
            calls.append(draft.recipient_user_id)
            if draft.recipient_user_id == "admin1":
                raise StoreUnavailable("down")
            return await original(draft)

        with patch.object(dispatcher, "_write", side_effect=flaky):
            ids = await dispatcher.emit(_behavior(BehaviorType.BULLYING))

        assert calls == ["admin1", "parent1"]
        assert len(ids) == 1
        assert len(await core.notifications.list_for(PARENT1)) == 1


class TestRecipientOperations:
    @pytest.mark.asyncio
    async def test_mark_read_is_idempotent(self, core):
        [note_id] = await core.notifications.emit(
            TripStarted("t1", "driver1", "Dana Driver", "admin1")
        )
        first = await core.notifications.mark_read(ADMIN, note_id)
        second = await core.notifications.mark_read(ADMIN, note_id)
        assert first.read and second.read
        assert second.version == first.version

    @pytest.mark.asyncio
    async def test_only_recipient_can_mark_read(self, core):
        [note_id] = await core.notifications.emit(
            TripStarted("t1", "driver1", "Dana Driver", "admin1")
        )
        with pytest.raises(NotificationNotFound):
            await core.notifications.mark_read(PARENT1, note_id)
        assert not (await core.notifications.list_for(ADMIN))[0].read

    @pytest.mark.asyncio
    async def test_mark_unknown(self, core):
        with pytest.raises(NotificationNotFound):
            await core.notifications.mark_read(ADMIN, "missing")

    @pytest.mark.asyncio
    async def test_mark_all_read_and_unread_filter(self, core):
        await core.notifications.emit(TripStarted("t1", "driver1", "Dana", "admin1"))
        await core.notifications.emit(TripStarted("t2", "driver2", "Drew", "admin1"))

        assert len(await core.notifications.list_for(ADMIN, unread_only=True)) == 2
        assert await core.notifications.mark_all_read(ADMIN) == 2
        assert await core.notifications.list_for(ADMIN, unread_only=True) == []
        assert await core.notifications.mark_all_read(ADMIN) == 0

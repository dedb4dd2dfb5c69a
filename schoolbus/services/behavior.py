"""Driver-filed behavior reports about students on their trip."""

from __future__ import annotations

import logging
import uuid

from schoolbus.domain.entities import Actor, BehaviorReport, utcnow
from schoolbus.domain.enums import BehaviorType
from schoolbus.domain.events import BehaviorReported
from schoolbus.infrastructure.directory import Directory
from schoolbus.infrastructure.store import RealtimeStore
from schoolbus.services.boarding import load_trip_and_student
from schoolbus.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


class BehaviorReporter:
    def __init__(
        self,
        store: RealtimeStore,
        directory: Directory,
        dispatcher: NotificationDispatcher,
    ):
        self.store = store
        self.directory = directory
        self.dispatcher = dispatcher

    async def report(
        self,
        actor: Actor,
        trip_id: str,
        student_id: str,
        behavior_type: BehaviorType,
        description: str = "",
    ) -> BehaviorReport:
        trip, student = await load_trip_and_student(
            self.store, self.directory, trip_id, student_id
        )
        report = BehaviorReport(
            id=str(uuid.uuid4()),
            trip_id=trip.id,
            student_id=student.id,
            driver_id=trip.driver_id,
            type=behavior_type,
            description=description,
            created_at=utcnow(),
        )
        async with self.store.unit_of_work() as uow:
            await uow.behavior_reports.add(report)

        logger.info(
            "Behavior report %s (%s) for student %s by %s",
            report.id, behavior_type.value, student.id, actor.user_id,
        )
        await self.dispatcher.emit(
            BehaviorReported(
                trip_id=trip.id,
                driver_id=trip.driver_id,
                driver_name=await self.directory.display_name(trip.driver_id),
                admin_id=trip.admin_id,
                student_id=student.id,
                student_name=student.full_name,
                parent_id=student.parent_id,
                behavior_type=behavior_type,
            )
        )
        return report

"""Read-only directory lookups (users, students, routes) with offline fallback."""

from __future__ import annotations

from typing import Optional

from .resilient import ResilientReader
from .store import RealtimeStore
from schoolbus.domain.entities import Route, Student, User

USERS = "users"
STUDENTS = "students"
ROUTES = "routes"


class Directory:
    def __init__(self, store: RealtimeStore, reader: ResilientReader):
        self.store = store
        self.reader = reader

    async def get_user(self, user_id: str) -> Optional[User]:
        async def fetch():
            async with self.store.read() as uow:
                return await uow.directory.get_user(user_id)

        doc = await self.reader.get(USERS, user_id, fetch)
        return User.from_document(doc) if doc else None

    async def get_student(self, student_id: str) -> Optional[Student]:
        async def fetch():
            async with self.store.read() as uow:
                return await uow.directory.get_student(student_id)

        doc = await self.reader.get(STUDENTS, student_id, fetch)
        return Student.from_document(doc) if doc else None

    async def get_route(self, route_id: str) -> Optional[Route]:
        async def fetch():
            async with self.store.read() as uow:
                return await uow.directory.get_route(route_id)

        doc = await self.reader.get(ROUTES, route_id, fetch)
        return Route.from_document(doc) if doc else None

    async def route_for_driver(self, driver_id: str) -> Optional[Route]:
        """The driver's route (first by id when several are assigned)."""

        async def fetch():
            async with self.store.read() as uow:
                return await uow.directory.routes_for_driver(driver_id)

        docs = await self.reader.query(ROUTES, {"driver_id": driver_id}, fetch)
        if not docs:
            return None
        return Route.from_document(sorted(docs, key=lambda d: d["id"])[0])

    async def display_name(self, user_id: Optional[str]) -> str:
        if not user_id:
            return ""
        user = await self.get_user(user_id)
        return user.display_name if user else user_id

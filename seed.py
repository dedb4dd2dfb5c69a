"""
Seed script -- populates the directory tables with demo data.

Run after migrations:
    python seed.py

Creates:
  - 1 admin, 2 drivers, 3 parents
  - 4 students
  - 1 route with ordered stops (driver ``driver-amy``); ``driver-ben``
    has no route, so starting a trip for him fails with NoRouteAssigned
"""

import asyncio
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from schoolbus.domain.enums import UserRole
from schoolbus.infrastructure.database import create_engine, create_session_factory
from schoolbus.infrastructure.models import (
    RouteModel,
    RouteStopModel,
    StudentModel,
    UserModel,
)

ADMIN_ID = "admin-olivia"

USERS = [
    {"id": ADMIN_ID, "display_name": "Olivia Grant", "email": "olivia@district.example", "role": UserRole.ADMIN},
    {"id": "driver-amy", "display_name": "Amy Walsh", "email": "amy@district.example", "role": UserRole.DRIVER, "admin_id": ADMIN_ID},
    {"id": "driver-ben", "display_name": "Ben Ortiz", "email": "ben@district.example", "role": UserRole.DRIVER, "admin_id": ADMIN_ID},
    {"id": "parent-lee", "display_name": "Jordan Lee", "email": "lee@family.example", "role": UserRole.PARENT, "admin_id": ADMIN_ID},
    {"id": "parent-khan", "display_name": "Sam Khan", "email": "khan@family.example", "role": UserRole.PARENT, "admin_id": ADMIN_ID},
    {"id": "parent-diaz", "display_name": "Alex Diaz", "email": "diaz@family.example", "role": UserRole.PARENT, "admin_id": ADMIN_ID},
]

STUDENTS = [
    {"id": "stu-mia", "full_name": "Mia Lee", "grade": "3", "parent_id": "parent-lee", "driver_id": "driver-amy", "home": (40.7411, -73.9897)},
    {"id": "stu-noah", "full_name": "Noah Lee", "grade": "5", "parent_id": "parent-lee", "driver_id": "driver-amy", "home": (40.7411, -73.9897)},
    {"id": "stu-zara", "full_name": "Zara Khan", "grade": "4", "parent_id": "parent-khan", "driver_id": "driver-amy", "home": (40.7359, -73.9911)},
    {"id": "stu-luis", "full_name": "Luis Diaz", "grade": "2", "parent_id": "parent-diaz", "driver_id": "driver-amy", "home": (40.7306, -73.9866)},
]

ROUTES = [
    {
        "id": "route-north",
        "name": "North Morning Run",
        "driver_id": "driver-amy",
        "bus_id": "bus-12",
        "admin_id": ADMIN_ID,
        "stops": ["stu-mia", "stu-noah", "stu-zara", "stu-luis"],
    },
]


async def insert_directory(
    session: AsyncSession,
    users: list[dict],
    students: list[dict],
    routes: list[dict],
) -> None:
    """Insert directory rows.  Route stops take their location from the student's home."""
    for u in users:
        session.add(
            UserModel(
                id=u["id"],
                display_name=u["display_name"],
                email=u.get("email"),
                role=u["role"],
                phone_number=u.get("phone_number"),
                admin_id=u.get("admin_id"),
            )
        )
    homes = {}
    for s in students:
        lat, lng = s.get("home") or (None, None)
        homes[s["id"]] = (lat, lng)
        session.add(
            StudentModel(
                id=s["id"],
                full_name=s["full_name"],
                grade=s.get("grade"),
                school=s.get("school", "Riverside Elementary"),
                parent_id=s.get("parent_id"),
                driver_id=s.get("driver_id"),
                home_lat=lat,
                home_lng=lng,
                admin_id=s.get("admin_id", ADMIN_ID),
            )
        )
    for r in routes:
        session.add(
            RouteModel(
                id=r["id"],
                name=r["name"],
                driver_id=r["driver_id"],
                bus_id=r.get("bus_id"),
                admin_id=r.get("admin_id"),
            )
        )
        for position, student_id in enumerate(r["stops"]):
            lat, lng = homes.get(student_id, (0.0, 0.0))
            session.add(
                RouteStopModel(
                    route_id=r["id"],
                    position=position,
                    student_id=student_id,
                    lat=lat if lat is not None else 0.0,
                    lng=lng if lng is not None else 0.0,
                    estimated_time=datetime(2026, 1, 1, 7, 15 + 5 * position, tzinfo=timezone.utc),
                )
            )
    await session.flush()


async def seed():
    engine = create_engine()
    session_factory = create_session_factory(engine)
    try:
        async with session_factory() as session:
            # Check if already seeded
            result = await session.execute(text("SELECT count(*) FROM users"))
            if result.scalar() > 0:
                print("Database already seeded. Skipping.")
                return

            await insert_directory(session, USERS, STUDENTS, ROUTES)
            await session.commit()
            print(f"  Created {len(USERS)} users")
            print(f"  Created {len(STUDENTS)} students")
            print(f"  Created {len(ROUTES)} route(s)")
            print("\nSeed complete!")
    finally:
        await engine.dispose()


async def main():
    print("Seeding database...")
    await seed()


if __name__ == "__main__":
    asyncio.run(main())

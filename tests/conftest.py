import os
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_JSON", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from tuition_billing.core.enums import EnrollmentStatus
from tuition_billing.core.models import Enrollment, SchoolClass, Student
from tuition_billing.db.init_db import create_tables
from tuition_billing.db.session import get_db
from tuition_billing.main import app


@pytest.fixture()
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite per test so separate sessions really use separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}", echo=False, future=True)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async with session_factory() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def add_student(db: AsyncSession, sid: str, payment_method: str = "CASH") -> Student:
    student = Student(
        sid=sid,
        name=f"Student {sid}",
        email=f"{sid.lower()}@example.com",
        contact_number="+94770000000",
        payment_method=payment_method,
    )
    db.add(student)
    await db.commit()
    return student


async def add_class(db: AsyncSession, class_id: str, monthly_fee=Decimal("100.00")) -> SchoolClass:
    cl = SchoolClass(
        class_id=class_id,
        name=f"Class {class_id}",
        center_id=1,
        monthly_fee=monthly_fee,
        schedule_days=["SATURDAY"],
    )
    db.add(cl)
    await db.commit()
    return cl


async def add_enrollment(
    db: AsyncSession,
    student_sid: str,
    class_id: str,
    enrollment_date: date,
    adjusted_fee=None,
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
) -> Enrollment:
    enrollment = Enrollment(
        student_sid=student_sid,
        class_id=class_id,
        enrollment_date=enrollment_date,
        adjusted_fee=adjusted_fee,
        status=status.value,
    )
    db.add(enrollment)
    await db.commit()
    return enrollment


@pytest.fixture()
async def enrolled(db_session: AsyncSession) -> Enrollment:
    """S001 in MATH-10 (fee 100.00), billed from 10 Jan 2024 (week 2)."""
    await add_student(db_session, "S001")
    await add_class(db_session, "MATH-10")
    return await add_enrollment(db_session, "S001", "MATH-10", date(2024, 1, 10))

from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal
from itertools import count

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from school_billing.core.database.base import Base
from school_billing.core.database import get_db
from school_billing.main import app
from school_billing.modules.branches.models import Branch
from school_billing.modules.courses.models import (
    BillingFrequency,
    Course,
    CourseFeeStructure,
    FeeComponent,
)
from school_billing.modules.payments.models import Payment, PaymentMethod, PaymentStatus
from school_billing.modules.students.models import (
    AcademicStatus,
    CourseEnrollment,
    EnrollmentStatus,
    Student,
)
from school_billing.modules.users.models import User, UserRole

# In-memory SQLite for speed (aiosqlite keeps a single shared connection)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Fresh engine and schema for each test."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


class BillingFactory:
    """Creates billing test data (flushed, not committed)."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._seq = count(1)

    async def branch(self, name: str = "Main Campus") -> Branch:
        n = next(self._seq)
        branch = Branch(name=name, code=f"BR{n}", is_active=True)
        self.db.add(branch)
        await self.db.flush()
        return branch

    async def user(self, role: UserRole = UserRole.ADMIN, branch: Branch | None = None) -> User:
        n = next(self._seq)
        user = User(
            email=f"user{n}@school.test",
            full_name=f"User {n}",
            role=role.value,
            branch_id=branch.id if branch else None,
            is_active=True,
        )
        self.db.add(user)
        await self.db.flush()
        return user

    async def course(
        self,
        branch: Branch,
        frequency: BillingFrequency | None = BillingFrequency.MONTHLY,
        per_period_amount: Decimal | str | None = None,
        total_amount: Decimal | str | None = None,
        components: list[tuple[str, str]] | None = None,
        create_invoice_on_enrollment: bool = False,
        fee_structure_active: bool = True,
        with_fee_structure: bool = True,
    ) -> Course:
        n = next(self._seq)
        course = Course(branch_id=branch.id, code=f"C{n}", name=f"Course {n}", is_active=True)
        if with_fee_structure:
            course.fee_structure = CourseFeeStructure(
                billing_frequency=frequency.value if frequency else None,
                is_active=fee_structure_active,
                per_period_amount=Decimal(per_period_amount) if per_period_amount is not None else None,
                total_amount=Decimal(total_amount) if total_amount is not None else None,
                create_invoice_on_enrollment=create_invoice_on_enrollment,
                academic_year="2025",
                components=[
                    FeeComponent(name=name, amount=Decimal(amount), category="tuition")
                    for name, amount in (components or [])
                ],
            )
        else:
            course.fee_structure = None
        self.db.add(course)
        await self.db.flush()
        return course

    async def student(
        self,
        branch: Branch,
        enrollment_date: date | None = None,
        scholarship_percentage: Decimal | str = "0",
        academic_status: AcademicStatus = AcademicStatus.ACTIVE,
        with_user: bool = True,
        phone_number: str | None = None,
    ) -> Student:
        n = next(self._seq)
        user = await self.user(UserRole.STUDENT, branch) if with_user else None
        student = Student(
            student_number=f"STU-{n:05d}",
            first_name="Student",
            last_name=f"No{n}",
            branch_id=branch.id,
            user_id=user.id if user else None,
            phone_number=phone_number,
            enrollment_date=enrollment_date,
            scholarship_percentage=Decimal(scholarship_percentage),
            academic_status=academic_status.value,
        )
        self.db.add(student)
        await self.db.flush()
        return student

    async def enroll(
        self,
        student: Student,
        course: Course,
        status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
    ) -> CourseEnrollment:
        enrollment = CourseEnrollment(
            student_id=student.id,
            course_id=course.id,
            status=status.value,
            enrolled_on=date(2025, 1, 1),
        )
        self.db.add(enrollment)
        await self.db.flush()
        return enrollment

    async def payment(
        self,
        student: Student,
        amount: Decimal | str,
        status: PaymentStatus = PaymentStatus.COMPLETED,
    ) -> Payment:
        payment = Payment(
            student_id=student.id,
            branch_id=student.branch_id,
            amount=Decimal(amount),
            payment_method=PaymentMethod.MPESA.value,
            payment_date=date(2025, 1, 15),
            status=status.value,
        )
        self.db.add(payment)
        await self.db.flush()
        return payment


@pytest.fixture
def factory(db_session: AsyncSession) -> BillingFactory:
    return BillingFactory(db_session)

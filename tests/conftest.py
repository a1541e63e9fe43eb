"""
PayDesk - Test Configuration

Pytest fixtures and configuration. Every test gets its own SQLite database
file so that several sessions can be open at once, the way concurrent
requests and batch workers use the engine.
"""

from datetime import date
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, List
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import paydesk.models  # noqa: F401
from paydesk.database import Base, get_async_session
from paydesk.dependencies import get_batch_service, get_payroll_notifier
from paydesk.models.catalog import (
    CalculationMethod,
    ComponentKind,
    Deduction,
    DeductionCategory,
    DeductionCode,
    SalaryComponent,
    SalaryGrade,
)
from paydesk.models.employee import Department, Employee
from paydesk.services.notification_service import PayrollNotifier
from paydesk.services.payroll_batch_service import PayrollBatchService
from paydesk.services.payroll_service import PayrollService
from main import app


CATALOG_DATE = date(2024, 1, 1)


class RecordingNotifier(PayrollNotifier):
    """Keeps published events in memory."""
    
    def __init__(self):
        self.events: List[Dict[str, Any]] = []
    
    async def publish(self, event: Dict[str, Any]) -> None:
        self.events.append(event)


class FailingNotifier(PayrollNotifier):
    """Simulates an unreachable notification layer."""
    
    def __init__(self):
        self.attempts = 0
    
    async def publish(self, event: Dict[str, Any]) -> None:
        self.attempts += 1
        raise ConnectionError("notification broker unreachable")


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Session factory bound to a fresh database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'paydesk_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


@pytest.fixture
def payroll_service(db_session: AsyncSession, notifier: RecordingNotifier) -> PayrollService:
    return PayrollService(db_session, notifier)


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, notifier: RecordingNotifier) -> AsyncGenerator[AsyncClient, None]:
    """Test client with database, notifier and batch overrides."""
    
    async def override_get_session():
        async with session_factory() as session:
            yield session
    
    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_payroll_notifier] = lambda: notifier
    app.dependency_overrides[get_batch_service] = lambda: PayrollBatchService(
        session_factory, notifier, max_concurrency=1,
    )
    
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    
    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest.fixture
def employee_factory(db_session: AsyncSession):
    """Create employees inside a test: `await employee_factory("ENG-002", engineering)`."""
    async def factory(staff_number: str, department: Department = None, **kwargs) -> Employee:
        return await make_employee(db_session, staff_number, department, **kwargs)
    return factory


@pytest_asyncio.fixture
async def engineering(db_session: AsyncSession) -> Department:
    department = Department(id=uuid4(), name="Engineering", code="ENG")
    db_session.add(department)
    await db_session.commit()
    return department


@pytest_asyncio.fixture
async def marketing(db_session: AsyncSession) -> Department:
    department = Department(id=uuid4(), name="Marketing", code="MKT")
    db_session.add(department)
    await db_session.commit()
    return department


@pytest_asyncio.fixture
async def global_grade(db_session: AsyncSession) -> SalaryGrade:
    """GL-07: 600,000 basic, Housing 100,000 fixed, Transport 5%."""
    grade = SalaryGrade(
        id=uuid4(),
        level="GL-07",
        basic_salary=Decimal("600000"),
        effective_date=CATALOG_DATE,
    )
    grade.components.append(SalaryComponent(
        name="Housing", kind=ComponentKind.FIXED, value=Decimal("100000"), position=0,
    ))
    grade.components.append(SalaryComponent(
        name="Transport", kind=ComponentKind.PERCENTAGE, value=Decimal("5"), position=1,
    ))
    db_session.add(grade)
    await db_session.commit()
    return grade


@pytest_asyncio.fixture
async def scenario_deductions(db_session: AsyncSession) -> List[Deduction]:
    """PAYE [0-300k]@7%, [300k-open]@11% and pension 8% of gross."""
    paye = Deduction(
        id=uuid4(),
        name="PAYE Tax",
        category=DeductionCategory.STATUTORY,
        code=DeductionCode.PAYE,
        calculation_method=CalculationMethod.PROGRESSIVE,
        tax_brackets=[
            {"min": "0", "max": "300000", "rate": "7"},
            {"min": "300000", "max": None, "rate": "11"},
        ],
        effective_date=CATALOG_DATE,
        priority=10,
    )
    pension = Deduction(
        id=uuid4(),
        name="Pension",
        category=DeductionCategory.STATUTORY,
        code=DeductionCode.PENSION,
        calculation_method=CalculationMethod.PERCENTAGE,
        value=Decimal("8"),
        effective_date=CATALOG_DATE,
        priority=20,
    )
    db_session.add_all([paye, pension])
    await db_session.commit()
    return [paye, pension]


async def make_employee(
    db_session: AsyncSession,
    staff_number: str,
    department: Department = None,
    grade_level: str = "GL-07",
    first_name: str = "Ada",
    last_name: str = "Obi",
) -> Employee:
    employee = Employee(
        id=uuid4(),
        staff_number=staff_number,
        first_name=first_name,
        last_name=last_name,
        grade_level=grade_level,
        department_id=department.id if department else None,
    )
    db_session.add(employee)
    await db_session.commit()
    return employee


@pytest_asyncio.fixture
async def engineer(db_session: AsyncSession, engineering: Department) -> Employee:
    return await make_employee(db_session, "ENG-001", engineering)

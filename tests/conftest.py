"""
Pytest configuration and fixtures.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret")

from decimal import Decimal

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from commission_engine.auth.permissions import Permission
from commission_engine.models import Base, Employee, User, UserRole
from commission_engine.schemas.rule import CommissionRuleCreate
from commission_engine.services.rules import CommissionRuleManager

# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


async def _add_user(db, username, role=UserRole.MANAGER, permissions=None, is_active=True):
    user = User(
        username=username,
        display_name=username.title(),
        role=role,
        permissions=permissions or [],
        is_active=is_active,
    )
    db.add(user)
    await db.flush()
    return user


@pytest_asyncio.fixture
async def admin(db_session):
    """Administrator: holds every permission."""
    return await _add_user(db_session, "admin", role=UserRole.ADMIN)


@pytest_asyncio.fixture
async def manager(db_session):
    """Manager granted every commission permission explicitly."""
    return await _add_user(db_session, "manager", permissions=list(Permission.ALL))


@pytest_asyncio.fixture
async def viewer(db_session):
    """User that may only look."""
    return await _add_user(
        db_session, "viewer", role=UserRole.EMPLOYEE, permissions=[Permission.VIEW]
    )


@pytest_asyncio.fixture
async def employee(db_session):
    emp = Employee(employee_number="E-001", name="Ana Silva", is_active=True)
    db_session.add(emp)
    await db_session.flush()
    return emp


@pytest_asyncio.fixture
async def other_employee(db_session):
    emp = Employee(employee_number="E-002", name="Ben Okafor", is_active=True)
    db_session.add(emp)
    await db_session.flush()
    return emp


@pytest_asyncio.fixture
async def margin_rule(db_session, admin, employee):
    """10% of margin, the employee's default rule."""
    return await CommissionRuleManager(db_session).create_rule(
        admin,
        CommissionRuleCreate(
            employee_id=employee.id,
            name="Standard margin",
            type="margin_percentage",
            rate=Decimal("10"),
        ),
    )


@pytest_asyncio.fixture
async def auto_rule(db_session, admin, employee):
    """5% of revenue, approved automatically once the invoice is paid."""
    return await CommissionRuleManager(db_session).create_rule(
        admin,
        CommissionRuleCreate(
            employee_id=employee.id,
            name="Auto revenue",
            type="revenue_percentage",
            rate=Decimal("5"),
            auto_approve=True,
        ),
    )

"""
NairaPay Core - Test Configuration

Pytest fixtures and configuration.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.database import Base, get_async_session
from app.models.employee import (
    Employee,
    EmployeePayrollDetail,
    EmployeeTaxSettings,
    PayFrequency,
    PayType,
    StaffRole,
)
from app.models.tenant import Shop, Tenant
from app.services.inventory_service import InventoryService
from app.services.tax_table_service import TaxTableService
from main import app


# In-memory SQLite shared across the session's connections
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# TENANCY FIXTURES
# ===========================================

@pytest_asyncio.fixture
async def test_tenant(db_session: AsyncSession) -> Tenant:
    tenant = Tenant(name="Mama Put Foods", slug=f"mama-put-{uuid.uuid4().hex[:8]}", is_active=True)
    db_session.add(tenant)
    await db_session.commit()
    return tenant


@pytest_asyncio.fixture
async def supplier_tenant(db_session: AsyncSession) -> Tenant:
    tenant = Tenant(name="Lagos Wholesale", slug=f"lagos-wholesale-{uuid.uuid4().hex[:8]}", is_active=True)
    db_session.add(tenant)
    await db_session.commit()
    return tenant


@pytest_asyncio.fixture
async def test_shop(db_session: AsyncSession, test_tenant: Tenant) -> Shop:
    shop = Shop(
        tenant_id=test_tenant.id,
        name="Yaba Branch",
        jurisdiction="NG",
        overtime_threshold_hours=Decimal("40"),
        overtime_multiplier=Decimal("1.5"),
        default_pension_employee_rate=Decimal("8"),
        default_pension_employer_rate=Decimal("10"),
        default_nhf_rate=Decimal("2.5"),
        wage_advance_max_percentage=Decimal("30"),
    )
    db_session.add(shop)
    await db_session.commit()
    return shop


@pytest_asyncio.fixture
async def statutory_tables(db_session: AsyncSession):
    """PITA 2011 and NTA 2025 system tables."""
    await TaxTableService(db_session).seed_statutory_tables()
    return await TaxTableService(db_session).list_tables()


@pytest.fixture
def make_employee(db_session: AsyncSession, test_tenant: Tenant, test_shop: Shop):
    """Factory for employees, with or without a payroll detail."""

    async def _make(
        first_name: str = "Chidi",
        last_name: str = "Okafor",
        role: StaffRole = StaffRole.STAFF,
        pay_amount: Optional[Decimal] = Decimal("500000.00"),
        pay_type: PayType = PayType.SALARY,
        pay_frequency: PayFrequency = PayFrequency.MONTHLY,
        bank_name: Optional[str] = "GTBank",
        bank_account_number: Optional[str] = "0123456789",
        annual_rent_paid: Optional[Decimal] = None,
        rent_proof_document: Optional[str] = None,
        start_date: Optional[date] = None,
        tax_id_number: Optional[str] = None,
        pension_pin: Optional[str] = None,
        pfa_name: Optional[str] = None,
    ) -> Employee:
        employee = Employee(
            tenant_id=test_tenant.id,
            shop_id=test_shop.id,
            first_name=first_name,
            last_name=last_name,
            role=role,
            is_active=True,
        )
        if pay_amount is not None:
            employee.payroll_detail = EmployeePayrollDetail(
                pay_type=pay_type,
                pay_amount=pay_amount,
                pay_frequency=pay_frequency,
                pension_enabled=True,
                pension_employee_rate=Decimal("8"),
                pension_employer_rate=Decimal("10"),
                bank_name=bank_name,
                bank_account_number=bank_account_number,
                start_date=start_date,
                tax_id_number=tax_id_number,
                pension_pin=pension_pin,
                pfa_name=pfa_name,
            )
        if annual_rent_paid is not None:
            employee.tax_settings = EmployeeTaxSettings(
                is_homeowner=False,
                annual_rent_paid=annual_rent_paid,
                rent_proof_document=rent_proof_document,
            )
        db_session.add(employee)
        await db_session.commit()
        return employee

    return _make


@pytest.fixture
def make_stock_item(db_session: AsyncSession):
    async def _make(tenant: Tenant, sku: str, quantity: Decimal, name: Optional[str] = None):
        return await InventoryService(db_session).create_item(
            tenant.id, sku=sku, name=name or sku.title(), quantity_on_hand=quantity,
        )

    return _make


def auth_headers(tenant_id: uuid.UUID, role: StaffRole = StaffRole.OWNER, user_id: Optional[uuid.UUID] = None) -> dict:
    """Request context headers for API tests."""
    return {
        "X-Tenant-ID": str(tenant_id),
        "X-User-ID": str(user_id or uuid.uuid4()),
        "X-User-Role": role.value,
    }


@pytest.fixture
def owner_headers(test_tenant: Tenant) -> dict:
    return auth_headers(test_tenant.id, StaffRole.OWNER)

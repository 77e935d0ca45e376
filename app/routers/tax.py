"""
NairaPay Core - Tax Router

Tax table administration and ad-hoc PAYE calculations under PITA 2011 and
the Nigeria Tax Act 2025.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_async_session
from app.dependencies import RequestContext, get_request_context, require_role
from app.models.employee import StaffRole
from app.schemas.tax import (
    TaxCalculationRequest,
    TaxCompareRequest,
    TaxResolveResponse,
    TaxSettingsInput,
    TaxTableCreate,
    TaxTableResponse,
    TaxTableUpdate,
)
from app.services.tax_calculators.relief_calculator import TaxSettingsSnapshot
from app.services.tax_table_service import TaxTableService, contributions_from


router = APIRouter()


def _settings_snapshot(data: TaxSettingsInput) -> TaxSettingsSnapshot:
    codes = data.active_relief_codes
    return TaxSettingsSnapshot(
        is_homeowner=data.is_homeowner,
        annual_rent_paid=data.annual_rent_paid,
        is_tax_exempt=data.is_tax_exempt,
        exemption_reason=data.exemption_reason,
        exemption_expires_at=data.exemption_expires_at,
        active_relief_codes=tuple(codes) if codes is not None else None,
        rent_proof_document=data.rent_proof_document,
        rent_proof_expiry=data.rent_proof_expiry,
    )


# ===========================================
# TAX TABLES
# ===========================================

@router.get("/tables", response_model=List[TaxTableResponse], summary="List tax tables")
async def list_tax_tables(
    jurisdiction: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    """System tables plus the caller's tenant-specific tables."""
    return await TaxTableService(db).list_tables(ctx.tenant_id, jurisdiction)


@router.post(
    "/tables",
    response_model=TaxTableResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tenant-specific tax table",
)
async def create_tax_table(
    data: TaxTableCreate,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.OWNER)),
):
    payload = data.model_dump()
    return await TaxTableService(db).create_table(ctx.tenant_id, payload)


@router.get("/tables/{table_id}", response_model=TaxTableResponse)
async def get_tax_table(
    table_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await TaxTableService(db).get_table(table_id, ctx.tenant_id)


@router.patch("/tables/{table_id}", response_model=TaxTableResponse)
async def update_tax_table(
    table_id: uuid.UUID,
    data: TaxTableUpdate,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.OWNER)),
):
    """Rejected with 422 once a payslip references the table."""
    return await TaxTableService(db).update_table(
        table_id, ctx.tenant_id, data.model_dump(exclude_unset=True)
    )


@router.delete("/tables/{table_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tax_table(
    table_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.OWNER)),
):
    await TaxTableService(db).delete_table(table_id, ctx.tenant_id)


# ===========================================
# RESOLUTION AND CALCULATION
# ===========================================

@router.get("/resolve", response_model=TaxResolveResponse, summary="Table in force on a date")
async def resolve_tax_table(
    on_date: date = Query(..., description="Pay date"),
    jurisdiction: str = Query(settings.default_jurisdiction),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    table = await TaxTableService(db).resolve(jurisdiction, on_date, ctx.tenant_id)
    return TaxResolveResponse(
        id=table.id,
        name=table.name,
        law_version=table.law_version,
        effective_from=table.effective_from,
        effective_to=table.effective_to,
        tenant_id=table.tenant_id,
    )


@router.post("/calculate", summary="Calculate PAYE for one pay period")
async def calculate_tax(
    data: TaxCalculationRequest,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    result = await TaxTableService(db).calculate(
        gross_income=data.gross_income,
        periods_per_year=data.frequency.periods_per_year,
        jurisdiction=data.jurisdiction,
        on_date=data.on_date or date.today(),
        tenant_id=ctx.tenant_id,
        settings=_settings_snapshot(data.tax_settings),
        contributions=contributions_from(
            data.pension_contribution, data.nhf_contribution, data.nhis_contribution
        ),
        pre_tax_deductions=data.pre_tax_deductions,
        tax_handling=data.tax_handling,
    )
    return result.to_dict()


@router.post("/compare", summary="Compare PITA 2011 and NTA 2025 for the same income")
async def compare_tax_regimes(
    data: TaxCompareRequest,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await TaxTableService(db).compare(
        data.gross_annual_income,
        jurisdiction=data.jurisdiction,
        tenant_id=ctx.tenant_id,
        settings=_settings_snapshot(data.tax_settings),
        contributions=contributions_from(data.pension_contribution),
    )

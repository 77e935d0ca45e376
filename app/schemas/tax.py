"""
NairaPay Core - Tax Schemas

Pydantic schemas for tax tables and PAYE calculations.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.models.employee import PayFrequency, TaxHandling
from app.models.tax_table import ReliefType, TaxLawVersion


# ===========================================
# TAX TABLES
# ===========================================

class TaxBandSchema(BaseModel):
    """One band; upper_limit None means open-ended."""
    band_order: int = Field(..., ge=0)
    lower_limit: Decimal = Field(..., ge=0)
    upper_limit: Optional[Decimal] = Field(None, gt=0)
    rate: Decimal = Field(..., ge=0, le=100)

    class Config:
        from_attributes = True


class TaxReliefSchema(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    relief_type: ReliefType
    amount: Optional[Decimal] = Field(None, ge=0)
    rate: Optional[Decimal] = Field(None, ge=0, le=100)
    cap: Optional[Decimal] = Field(None, ge=0)
    requires_proof: bool = False
    is_automatic: bool = False
    is_active: bool = True
    eligibility: Optional[Dict[str, Any]] = None
    sort_order: int = 0

    class Config:
        from_attributes = True


class TaxTableCreate(BaseModel):
    """Create a tenant-specific tax table."""
    jurisdiction: str = Field("NG", min_length=2, max_length=5)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    effective_from: date
    effective_to: Optional[date] = None
    law_version: TaxLawVersion
    low_income_threshold: Optional[Decimal] = Field(None, ge=0)
    cra_applicable: bool = False
    minimum_tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    pension_floor: Optional[Decimal] = Field(None, ge=0)
    pension_ceiling: Optional[Decimal] = Field(None, ge=0)
    bands: List[TaxBandSchema] = Field(..., min_length=1)
    reliefs: List[TaxReliefSchema] = []

    @model_validator(mode="after")
    def check_dates(self):
        if self.effective_to is not None and self.effective_to <= self.effective_from:
            raise ValueError("effective_to must be after effective_from")
        return self


class TaxTableUpdate(BaseModel):
    """Editable fields; bands are replaced by superseding the table."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    effective_to: Optional[date] = None
    is_active: Optional[bool] = None
    low_income_threshold: Optional[Decimal] = Field(None, ge=0)
    minimum_tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    pension_floor: Optional[Decimal] = Field(None, ge=0)
    pension_ceiling: Optional[Decimal] = Field(None, ge=0)


class TaxTableResponse(BaseModel):
    id: UUID
    tenant_id: Optional[UUID] = None
    jurisdiction: str
    effective_year: int
    name: str
    description: Optional[str] = None
    effective_from: date
    effective_to: Optional[date] = None
    law_version: TaxLawVersion
    low_income_threshold: Optional[Decimal] = None
    cra_applicable: bool
    minimum_tax_rate: Optional[Decimal] = None
    pension_floor: Optional[Decimal] = None
    pension_ceiling: Optional[Decimal] = None
    is_active: bool
    bands: List[TaxBandSchema] = []
    reliefs: List[TaxReliefSchema] = []
    created_at: datetime

    class Config:
        from_attributes = True


# ===========================================
# CALCULATION
# ===========================================

class TaxSettingsInput(BaseModel):
    """Employee tax settings for ad-hoc calculations."""
    is_homeowner: bool = False
    annual_rent_paid: Decimal = Field(Decimal("0"), ge=0)
    rent_proof_document: Optional[str] = None
    rent_proof_expiry: Optional[date] = None
    is_tax_exempt: bool = False
    exemption_reason: Optional[str] = None
    exemption_expires_at: Optional[date] = None
    active_relief_codes: Optional[List[str]] = None


class TaxCalculationRequest(BaseModel):
    gross_income: Decimal = Field(..., ge=0, description="Gross income per pay period")
    frequency: PayFrequency = PayFrequency.MONTHLY
    jurisdiction: str = "NG"
    on_date: Optional[date] = None
    tax_handling: TaxHandling = TaxHandling.SHOP_CALCULATES
    pension_contribution: Optional[Decimal] = Field(None, ge=0, description="Annual employee pension")
    nhf_contribution: Optional[Decimal] = Field(None, ge=0, description="Annual NHF")
    nhis_contribution: Optional[Decimal] = Field(None, ge=0, description="Annual NHIS")
    pre_tax_deductions: Decimal = Field(Decimal("0"), ge=0, description="Annual pre-tax deductions")
    tax_settings: TaxSettingsInput = TaxSettingsInput()


class TaxCompareRequest(BaseModel):
    gross_annual_income: Decimal = Field(..., ge=0)
    jurisdiction: str = "NG"
    pension_contribution: Optional[Decimal] = Field(None, ge=0)
    tax_settings: TaxSettingsInput = TaxSettingsInput()


class TaxResolveResponse(BaseModel):
    id: Optional[UUID] = None
    name: str
    law_version: TaxLawVersion
    effective_from: date
    effective_to: Optional[date] = None
    tenant_id: Optional[UUID] = None

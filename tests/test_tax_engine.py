"""
NairaPay Core - Tax Engine Tests

Unit tests for the band engine, table selection, reliefs and PAYE under
PITA 2011 and the Nigeria Tax Act 2025.
"""

import uuid
from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from app.models.employee import TaxHandling
from app.services.tax_calculators import (
    NTA_2025_TABLE,
    PITA_2011_TABLE,
    BandSpec,
    PAYECalculator,
    ProofStatus,
    ReliefCalculator,
    TaxBandEngine,
    TaxSettingsSnapshot,
    compare_tax_regimes,
    period_tax,
    select_applicable_table,
    validate_bands,
)
from app.services.tax_calculators.statutory_tables import (
    CRA_CODE,
    LOW_INCOME_EXEMPTION,
    PENSION_RELIEF,
    RENT_RELIEF,
)
from app.utils.error_handling import ConfigurationError, NoApplicableTaxTable


PAY_DATE_2025 = date(2025, 6, 30)
PAY_DATE_2026 = date(2026, 1, 31)


class TestTaxBandEngine:
    """Progressive band arithmetic."""

    def test_zero_income_has_no_tax(self):
        result = TaxBandEngine(NTA_2025_TABLE.bands).calculate(Decimal("0"))
        assert result.total_tax == Decimal("0.00")
        assert result.bands == []

    def test_negative_income_has_no_tax(self):
        result = TaxBandEngine(PITA_2011_TABLE.bands).calculate(Decimal("-5000"))
        assert result.total_tax == Decimal("0.00")

    def test_income_on_band_boundary(self):
        """Income exactly at a band edge is taxed entirely in the lower bands."""
        result = TaxBandEngine(NTA_2025_TABLE.bands).calculate(Decimal("3000000"))
        assert result.total_tax == Decimal("330000.00")
        assert result.marginal_rate == Decimal("15")

    def test_one_naira_over_boundary(self):
        result = TaxBandEngine(NTA_2025_TABLE.bands).calculate(Decimal("3000001"))
        assert result.total_tax == Decimal("330000.18")
        assert result.marginal_rate == Decimal("18")

    def test_band_lines_sum_to_total(self):
        result = TaxBandEngine(PITA_2011_TABLE.bands).calculate(Decimal("4320000"))
        assert sum(line.tax for line in result.bands) == result.total_tax
        assert result.total_tax == Decimal("828800.00")

    @pytest.mark.parametrize("table", [NTA_2025_TABLE, PITA_2011_TABLE], ids=["nta", "pita"])
    def test_monotonic_and_continuous_at_band_edges(self, table):
        engine = TaxBandEngine(table.bands)
        step = Decimal("0.01")
        for band in table.bands:
            if band.upper is None:
                continue
            below, at, above = (engine.calculate(band.upper + d).total_tax for d in (-step, 0, step))
            assert below <= at <= above
            # one kobo of income moves tax by at most one kobo
            assert at - below <= step
            assert above - at <= step

    def test_effective_rate_uses_gross(self):
        result = TaxBandEngine(NTA_2025_TABLE.bands).calculate(Decimal("3000000"), Decimal("6000000"))
        assert result.effective_rate == Decimal("5.50")


class TestPeriodTax:
    """Monthly tax is annual / periods, rounded half up to the kobo."""

    def test_even_split(self):
        assert period_tax(Decimal("783600.00"), 12) == Decimal("65300.00")

    def test_rounds_half_up(self):
        assert period_tax(Decimal("828800.00"), 12) == Decimal("69066.67")
        assert period_tax(Decimal("0.30"), 12) == Decimal("0.03")

    def test_rejects_non_positive_periods(self):
        with pytest.raises(ValueError):
            period_tax(Decimal("1000"), 0)


class TestBandValidation:
    """Bands must be contiguous from zero."""

    def test_statutory_tables_are_valid(self):
        validate_bands(PITA_2011_TABLE.bands)
        validate_bands(NTA_2025_TABLE.bands)

    def test_empty_bands_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_bands([])

    def test_first_band_must_start_at_zero(self):
        with pytest.raises(ConfigurationError):
            validate_bands([BandSpec(Decimal("100"), None, Decimal("10"))])

    def test_gap_rejected(self):
        bands = [
            BandSpec(Decimal("0"), Decimal("1000"), Decimal("0")),
            BandSpec(Decimal("2000"), None, Decimal("10")),
        ]
        with pytest.raises(ConfigurationError) as exc:
            validate_bands(bands)
        assert exc.value.details["issue"] == "gap"

    def test_overlap_rejected(self):
        bands = [
            BandSpec(Decimal("0"), Decimal("1000"), Decimal("0")),
            BandSpec(Decimal("900"), None, Decimal("10")),
        ]
        with pytest.raises(ConfigurationError) as exc:
            validate_bands(bands)
        assert exc.value.details["issue"] == "overlap"

    def test_open_band_must_be_last(self):
        bands = [
            BandSpec(Decimal("0"), None, Decimal("5")),
            BandSpec(Decimal("1000"), None, Decimal("10")),
        ]
        with pytest.raises(ConfigurationError):
            validate_bands(bands)

    def test_negative_rate_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_bands([BandSpec(Decimal("0"), None, Decimal("-1"))])


class TestTableSelection:
    """Date-based table resolution."""

    def test_pita_before_cutover(self):
        table = select_applicable_table([PITA_2011_TABLE, NTA_2025_TABLE], "NG", date(2025, 12, 31))
        assert table is PITA_2011_TABLE

    def test_nta_from_cutover(self):
        table = select_applicable_table([PITA_2011_TABLE, NTA_2025_TABLE], "NG", date(2026, 1, 1))
        assert table is NTA_2025_TABLE

    def test_no_table_for_unknown_jurisdiction(self):
        with pytest.raises(NoApplicableTaxTable):
            select_applicable_table([PITA_2011_TABLE, NTA_2025_TABLE], "GH", PAY_DATE_2026)

    def test_overlapping_system_tables_rejected(self):
        duplicate = replace(NTA_2025_TABLE, name="Duplicate NTA")
        with pytest.raises(NoApplicableTaxTable):
            select_applicable_table([NTA_2025_TABLE, duplicate], "NG", PAY_DATE_2026)

    def test_tenant_table_wins_over_system_table(self):
        tenant_id = uuid.uuid4()
        custom = replace(NTA_2025_TABLE, name="Tenant NTA", tenant_id=tenant_id)
        tables = [PITA_2011_TABLE, NTA_2025_TABLE, custom]
        assert select_applicable_table(tables, "NG", PAY_DATE_2026, tenant_id) is custom
        assert select_applicable_table(tables, "NG", PAY_DATE_2026) is NTA_2025_TABLE


class TestReliefs:
    """Relief evaluation per law version."""

    def test_cra_is_higher_of_fixed_and_percentage(self):
        result = ReliefCalculator(PITA_2011_TABLE).calculate(
            Decimal("6000000"), on_date=PAY_DATE_2025, contributions={PENSION_RELIEF: Decimal("480000")},
        )
        assert result.relief(CRA_CODE).amount == Decimal("1200000.00")
        assert result.taxable_income == Decimal("4320000.00")

    def test_cra_fixed_component_for_low_earners(self):
        result = ReliefCalculator(PITA_2011_TABLE).calculate(Decimal("500000"), on_date=PAY_DATE_2025)
        assert result.relief(CRA_CODE).amount == Decimal("205000.00")

    def test_no_cra_under_nta(self):
        result = ReliefCalculator(NTA_2025_TABLE).calculate(Decimal("6000000"), on_date=PAY_DATE_2026)
        assert result.relief(CRA_CODE) is None

    def test_rent_relief_recorded_with_missing_proof(self):
        """Rent declared without proof: zero relief, but the line is kept."""
        settings = TaxSettingsSnapshot(annual_rent_paid=Decimal("1200000"))
        result = ReliefCalculator(NTA_2025_TABLE).calculate(
            Decimal("6000000"), settings=settings, on_date=PAY_DATE_2026,
        )
        rent = result.relief(RENT_RELIEF)
        assert rent is not None
        assert rent.amount == Decimal("0")
        assert rent.proof_status == ProofStatus.MISSING
        assert rent.note == "Rent proof missing"

    def test_rent_relief_capped_with_valid_proof(self):
        settings = TaxSettingsSnapshot(
            annual_rent_paid=Decimal("3000000"),
            rent_proof_document="tenancy-2026.pdf",
            rent_proof_expiry=date(2026, 12, 31),
        )
        result = ReliefCalculator(NTA_2025_TABLE).calculate(
            Decimal("6000000"), settings=settings, on_date=PAY_DATE_2026,
        )
        rent = result.relief(RENT_RELIEF)
        assert rent.amount == Decimal("500000")
        assert rent.proof_status == ProofStatus.VALID

    def test_rent_relief_with_expired_proof(self):
        settings = TaxSettingsSnapshot(
            annual_rent_paid=Decimal("1200000"),
            rent_proof_document="tenancy-2025.pdf",
            rent_proof_expiry=date(2025, 12, 31),
        )
        rent = ReliefCalculator(NTA_2025_TABLE).calculate(
            Decimal("6000000"), settings=settings, on_date=PAY_DATE_2026,
        ).relief(RENT_RELIEF)
        assert rent.amount == Decimal("0")
        assert rent.proof_status == ProofStatus.EXPIRED

    def test_homeowner_gets_no_rent_relief(self):
        settings = TaxSettingsSnapshot(
            is_homeowner=True,
            annual_rent_paid=Decimal("1200000"),
            rent_proof_document="tenancy.pdf",
        )
        rent = ReliefCalculator(NTA_2025_TABLE).calculate(
            Decimal("6000000"), settings=settings, on_date=PAY_DATE_2026,
        ).relief(RENT_RELIEF)
        assert rent.amount == Decimal("0")
        assert rent.note == "Not eligible: homeowner"

    def test_ineligibility_note_names_the_failed_condition(self):
        reliefs = tuple(
            replace(r, eligibility={"is_homeowner": False, "is_tax_exempt": False}) if r.code == RENT_RELIEF else r
            for r in NTA_2025_TABLE.reliefs
        )
        table = replace(NTA_2025_TABLE, reliefs=reliefs)
        settings = TaxSettingsSnapshot(
            is_tax_exempt=True,
            exemption_expires_at=date(2025, 6, 30),
            annual_rent_paid=Decimal("1200000"),
            rent_proof_document="tenancy.pdf",
        )
        rent = ReliefCalculator(table).calculate(
            Decimal("6000000"), settings=settings, on_date=PAY_DATE_2026,
        ).relief(RENT_RELIEF)
        assert rent.amount == Decimal("0")
        assert rent.note == "Not eligible: tax exempt"

        settings = replace(settings, is_homeowner=True)
        rent = ReliefCalculator(table).calculate(
            Decimal("6000000"), settings=settings, on_date=PAY_DATE_2026,
        ).relief(RENT_RELIEF)
        assert rent.note == "Not eligible: homeowner, tax exempt"

    def test_low_income_exemption(self):
        result = ReliefCalculator(NTA_2025_TABLE).calculate(Decimal("700000"), on_date=PAY_DATE_2026)
        assert result.is_exempt
        assert result.relief(LOW_INCOME_EXEMPTION).amount == Decimal("700000")


class TestPAYECalculator:
    """PAYE for one employee."""

    def test_zero_income_is_exempt_under_nta(self):
        result = PAYECalculator(NTA_2025_TABLE).calculate(Decimal("0"), on_date=PAY_DATE_2026)
        assert result.is_exempt
        assert result.annual_tax == Decimal("0.00")
        assert result.period_tax == Decimal("0.00")

    def test_nta_monthly_salary(self):
        result = PAYECalculator(NTA_2025_TABLE).calculate(
            Decimal("6000000"),
            settings=TaxSettingsSnapshot(annual_rent_paid=Decimal("1200000")),
            on_date=PAY_DATE_2026,
            contributions={PENSION_RELIEF: Decimal("480000")},
        )
        assert result.taxable_income == Decimal("5520000.00")
        assert result.annual_tax == Decimal("783600.00")
        assert result.period_tax == Decimal("65300.00")
        assert not result.is_exempt

    def test_pita_monthly_salary(self):
        result = PAYECalculator(PITA_2011_TABLE).calculate(
            Decimal("6000000"),
            on_date=PAY_DATE_2025,
            contributions={PENSION_RELIEF: Decimal("480000")},
        )
        assert result.annual_tax == Decimal("828800.00")
        assert result.period_tax == Decimal("69066.67")
        assert not result.minimum_tax_applied

    def test_pita_minimum_tax(self):
        """Banded tax below 1% of gross is raised to the minimum."""
        result = PAYECalculator(PITA_2011_TABLE).calculate(Decimal("250000"), on_date=PAY_DATE_2025)
        assert result.minimum_tax_applied
        assert result.annual_tax == Decimal("2500.00")

    def test_just_above_low_income_threshold(self):
        result = PAYECalculator(NTA_2025_TABLE).calculate(Decimal("900000"), on_date=PAY_DATE_2026)
        assert not result.is_exempt
        assert result.taxable_income == Decimal("828000.00")
        assert result.annual_tax == Decimal("4200.00")

    def test_pre_tax_deductions_reduce_the_base(self):
        """A pre-tax deduction can bring income under the exemption threshold."""
        result = PAYECalculator(NTA_2025_TABLE).calculate(
            Decimal("900000"), on_date=PAY_DATE_2026, pre_tax_deductions=Decimal("150000"),
        )
        assert result.is_exempt
        assert result.annual_tax == Decimal("0.00")

    def test_exempt_employee(self):
        settings = TaxSettingsSnapshot(is_tax_exempt=True, exemption_reason="Diplomatic staff")
        result = PAYECalculator(NTA_2025_TABLE).calculate(
            Decimal("6000000"), settings=settings, on_date=PAY_DATE_2026,
        )
        assert result.is_exempt
        assert result.exemption_reason == "Diplomatic staff"
        assert result.annual_tax == Decimal("0.00")

    def test_expired_exemption_is_ignored(self):
        settings = TaxSettingsSnapshot(is_tax_exempt=True, exemption_expires_at=date(2025, 12, 31))
        result = PAYECalculator(NTA_2025_TABLE).calculate(
            Decimal("6000000"), settings=settings, on_date=PAY_DATE_2026,
        )
        assert not result.is_exempt
        assert result.annual_tax > 0

    def test_employee_calculates_own_tax(self):
        result = PAYECalculator(NTA_2025_TABLE).calculate(
            Decimal("6000000"), on_date=PAY_DATE_2026, tax_handling=TaxHandling.EMPLOYEE_CALCULATES,
        )
        assert not result.tax_withheld
        assert result.period_tax == Decimal("0.00")

    def test_compare_regimes(self):
        comparison = compare_tax_regimes(
            Decimal("6000000"),
            [PITA_2011_TABLE, NTA_2025_TABLE],
            on_date=PAY_DATE_2026,
            contributions={PENSION_RELIEF: Decimal("480000")},
        )
        pita, nta = comparison["regimes"]
        assert pita["annual_tax"] == "828800.00"
        assert nta["annual_tax"] == "783600.00"
        assert nta["difference_from_first"] == "-45200.00"

"""
NairaPay Core - Tax Table Service Tests

Seeding, tenant overrides and the immutability of referenced tables.
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from app.models.employee import StaffRole
from app.models.tax_table import TaxLawVersion
from app.services.pay_run_service import PayRunService
from app.services.tax_table_service import TaxTableService, contributions_from
from app.services.tax_calculators.statutory_tables import NHF_RELIEF, PENSION_RELIEF
from app.utils.error_handling import BusinessRuleException, ConfigurationError, NoApplicableTaxTable


def flat_table(**overrides):
    data = {
        "name": "Mama Put flat scale",
        "effective_from": date(2026, 1, 1),
        "law_version": TaxLawVersion.NTA_2025,
        "bands": [
            {"band_order": 1, "lower_limit": Decimal("0"), "upper_limit": Decimal("1000000"), "rate": Decimal("0")},
            {"band_order": 2, "lower_limit": Decimal("1000000"), "upper_limit": None, "rate": Decimal("10")},
        ],
    }
    data.update(overrides)
    return data


class TestSeeding:
    """System tables."""

    async def test_seed_is_idempotent(self, db_session, statutory_tables):
        assert {t.law_version for t in statutory_tables} == {TaxLawVersion.PITA_2011, TaxLawVersion.NTA_2025}
        assert await TaxTableService(db_session).seed_statutory_tables() == []
        assert len(await TaxTableService(db_session).list_tables()) == 2

    async def test_regime_by_date(self, db_session, statutory_tables):
        service = TaxTableService(db_session)
        assert (await service.resolve("NG", date(2025, 12, 31))).law_version == TaxLawVersion.PITA_2011
        assert (await service.resolve("NG", date(2026, 1, 1))).law_version == TaxLawVersion.NTA_2025

    async def test_no_table_without_seed(self, db_session):
        with pytest.raises(NoApplicableTaxTable):
            await TaxTableService(db_session).resolve("NG", date(2026, 1, 1))


class TestTenantTables:
    """Tenant-specific overrides."""

    async def test_create_with_bands(self, db_session, test_tenant):
        table = await TaxTableService(db_session).create_table(test_tenant.id, flat_table())
        assert table.tenant_id == test_tenant.id
        assert table.effective_year == 2026
        assert [b.band_order for b in table.bands] == [1, 2]

    async def test_gap_in_bands_rejected(self, db_session, test_tenant):
        bands = flat_table()["bands"]
        bands[1]["lower_limit"] = Decimal("1200000")
        with pytest.raises(ConfigurationError):
            await TaxTableService(db_session).create_table(test_tenant.id, flat_table(bands=bands))

    async def test_tenant_table_takes_precedence(self, db_session, test_tenant, statutory_tables):
        service = TaxTableService(db_session)
        await service.create_table(test_tenant.id, flat_table())

        result = await service.calculate(Decimal("500000"), 12, "NG", date(2026, 1, 31), tenant_id=test_tenant.id)
        assert result.table_name == "Mama Put flat scale"
        assert result.annual_tax == Decimal("500000.00")
        assert result.period_tax == Decimal("41666.67")

        system = await TaxTableService(db_session).calculate(
            Decimal("500000"), 12, "NG", date(2026, 1, 31),
            contributions=contributions_from(pension=Decimal("480000")),
        )
        assert system.annual_tax == Decimal("783600.00")

    async def test_other_tenants_do_not_see_it(self, db_session, test_tenant, statutory_tables):
        service = TaxTableService(db_session)
        await service.create_table(test_tenant.id, flat_table())
        assert len(await service.list_tables(uuid.uuid4())) == 2
        assert len(await service.list_tables(test_tenant.id)) == 3

    async def test_compare(self, db_session, statutory_tables):
        comparison = await TaxTableService(db_session).compare(
            Decimal("6000000"), contributions=contributions_from(pension=Decimal("480000")),
        )
        assert [r["annual_tax"] for r in comparison["regimes"]] == ["828800.00", "783600.00"]


class TestOverlap:
    """One active table per tier, jurisdiction and date."""

    async def test_second_active_table_on_same_dates_rejected(self, db_session, test_tenant, statutory_tables):
        service = TaxTableService(db_session)
        await service.create_table(test_tenant.id, flat_table())
        with pytest.raises(BusinessRuleException) as exc_info:
            await service.create_table(test_tenant.id, flat_table(name="Second scale"))
        assert exc_info.value.details["violated_rule"] == "TAX_TABLE_OVERLAP"

        table = await service.resolve("NG", date(2026, 3, 1), test_tenant.id)
        assert table.name == "Mama Put flat scale"

    async def test_consecutive_tables_allowed(self, db_session, test_tenant):
        service = TaxTableService(db_session)
        await service.create_table(test_tenant.id, flat_table(effective_to=date(2027, 1, 1)))
        later = await service.create_table(
            test_tenant.id, flat_table(name="2027 scale", effective_from=date(2027, 1, 1)),
        )
        assert later.effective_year == 2027

    async def test_other_tenant_and_system_tier_independent(self, db_session, test_tenant, statutory_tables):
        service = TaxTableService(db_session)
        await service.create_table(test_tenant.id, flat_table())
        await service.create_table(uuid.uuid4(), flat_table())

    async def test_extending_end_date_into_next_table_rejected(self, db_session, test_tenant):
        service = TaxTableService(db_session)
        first = await service.create_table(test_tenant.id, flat_table(effective_to=date(2027, 1, 1)))
        await service.create_table(test_tenant.id, flat_table(name="2027 scale", effective_from=date(2027, 1, 1)))

        with pytest.raises(BusinessRuleException) as exc_info:
            await service.update_table(first.id, test_tenant.id, {"effective_to": None})
        assert exc_info.value.details["violated_rule"] == "TAX_TABLE_OVERLAP"

    async def test_reactivating_clashing_table_rejected(self, db_session, test_tenant):
        service = TaxTableService(db_session)
        first = await service.create_table(test_tenant.id, flat_table())
        await service.update_table(first.id, test_tenant.id, {"is_active": False})
        await service.create_table(test_tenant.id, flat_table(name="Replacement scale"))

        with pytest.raises(BusinessRuleException):
            await service.update_table(first.id, test_tenant.id, {"is_active": True})
        await service.update_table(first.id, test_tenant.id, {"name": "Retired scale"})


class TestImmutability:
    """Tables referenced by payslips are frozen."""

    async def test_unreferenced_table_can_change(self, db_session, test_tenant):
        service = TaxTableService(db_session)
        table = await service.create_table(test_tenant.id, flat_table())
        table = await service.update_table(table.id, test_tenant.id, {"effective_to": date(2027, 1, 1)})
        assert table.effective_to == date(2027, 1, 1)
        await service.delete_table(table.id, test_tenant.id)
        assert await service.list_tables(test_tenant.id) == []

    async def test_referenced_table_is_frozen(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        payroll = PayRunService(db_session)
        period = await payroll.create_payroll_period(
            test_tenant.id, test_shop.id, "January 2026", date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 31),
        )
        pay_run = await payroll.create_pay_run(test_tenant.id, period.id)
        await payroll.calculate_pay_run(test_tenant.id, pay_run.id)
        await payroll.submit_for_approval(test_tenant.id, pay_run.id, uuid.uuid4())
        await payroll.approve_pay_run(test_tenant.id, pay_run.id, uuid.uuid4(), StaffRole.OWNER)
        await payroll.complete_pay_run(test_tenant.id, pay_run.id)

        nta = next(t for t in statutory_tables if t.law_version == TaxLawVersion.NTA_2025)
        service = TaxTableService(db_session)
        assert await service.is_referenced(nta.id)
        with pytest.raises(BusinessRuleException) as exc_info:
            await service.update_table(nta.id, None, {"name": "Edited"})
        assert exc_info.value.details["violated_rule"] == "TAX_TABLE_IMMUTABLE"
        with pytest.raises(BusinessRuleException):
            await service.delete_table(nta.id, None)


def test_contributions_from_skips_missing():
    assert contributions_from(pension=Decimal("40000")) == {PENSION_RELIEF: Decimal("40000")}
    assert NHF_RELIEF in contributions_from(nhf=Decimal("0"))

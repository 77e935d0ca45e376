"""
NairaPay Core - API Tests

HTTP surface: request context headers, role checks, error mapping and an
end-to-end payroll run.
"""

from decimal import Decimal

from app.models.employee import StaffRole
from conftest import auth_headers


API = "/api/v1"


class TestPlatform:
    """Health and request context."""

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert "status" in response.json()

    async def test_missing_headers(self, client):
        response = await client.get(f"{API}/tax/tables")
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "UNAUTHORIZED"

    async def test_unknown_role(self, client, test_tenant):
        headers = auth_headers(test_tenant.id)
        headers["X-User-Role"] = "cfo"
        response = await client.get(f"{API}/tax/tables", headers=headers)
        assert response.status_code == 400

    async def test_staff_cannot_create_tax_tables(self, client, test_tenant):
        response = await client.post(
            f"{API}/tax/tables",
            headers=auth_headers(test_tenant.id, StaffRole.STAFF),
            json={
                "name": "Staff scale",
                "effective_from": "2026-01-01",
                "law_version": "nta_2025",
                "bands": [{"band_order": 1, "lower_limit": "0", "upper_limit": None, "rate": "5"}],
            },
        )
        assert response.status_code == 403


class TestTaxEndpoints:
    """Ad-hoc calculations."""

    async def test_calculate_monthly_paye(self, client, owner_headers, statutory_tables):
        response = await client.post(
            f"{API}/tax/calculate",
            headers=owner_headers,
            json={
                "gross_income": "500000",
                "frequency": "monthly",
                "on_date": "2026-01-31",
                "pension_contribution": "480000",
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body["law_version"] == "nta_2025"
        assert Decimal(body["taxable_income"]) == Decimal("5520000")
        assert Decimal(body["annual_tax"]) == Decimal("783600.00")
        assert Decimal(body["period_tax"]) == Decimal("65300.00")

    async def test_resolve_before_cutover(self, client, owner_headers, statutory_tables):
        response = await client.get(f"{API}/tax/resolve", headers=owner_headers, params={"on_date": "2025-12-31"})
        assert response.status_code == 200
        assert response.json()["law_version"] == "pita_2011"

    async def test_no_table_is_a_server_configuration_error(self, client, owner_headers):
        response = await client.get(f"{API}/tax/resolve", headers=owner_headers, params={"on_date": "2026-01-31"})
        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "NO_APPLICABLE_TAX_TABLE"

    async def test_invalid_bands_rejected(self, client, owner_headers):
        response = await client.post(
            f"{API}/tax/tables",
            headers=owner_headers,
            json={
                "name": "Broken scale",
                "effective_from": "2026-01-01",
                "law_version": "nta_2025",
                "bands": [{"band_order": 1, "lower_limit": "100", "upper_limit": None, "rate": "5"}],
            },
        )
        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "CONFIGURATION_ERROR"


class TestPayrollEndpoints:
    """A full run through the HTTP API."""

    async def test_run_to_nibss_file(self, client, test_tenant, test_shop, statutory_tables, make_employee):
        employee = await make_employee()
        manager = auth_headers(test_tenant.id, StaffRole.ASSISTANT_MANAGER)
        owner = auth_headers(test_tenant.id, StaffRole.OWNER)

        response = await client.post(f"{API}/payroll/periods", headers=manager, json={
            "shop_id": str(test_shop.id),
            "name": "January 2026",
            "start_date": "2026-01-01",
            "end_date": "2026-01-31",
            "payment_date": "2026-01-31",
        })
        assert response.status_code == 201
        period_id = response.json()["id"]

        response = await client.post(f"{API}/payroll/runs", headers=manager, json={"payroll_period_id": period_id})
        assert response.status_code == 201
        run_id = response.json()["id"]
        assert response.json()["reference"] == "PAY-2026-01-001"

        response = await client.post(f"{API}/payroll/runs/{run_id}/calculate", headers=manager)
        assert response.status_code == 200
        assert Decimal(response.json()["total_net"]) == Decimal("394700.00")

        assert (await client.post(f"{API}/payroll/runs/{run_id}/submit", headers=manager)).status_code == 200

        response = await client.post(f"{API}/payroll/runs/{run_id}/approve", headers=manager)
        assert response.status_code == 403

        assert (await client.post(f"{API}/payroll/runs/{run_id}/approve", headers=owner)).status_code == 200
        response = await client.post(f"{API}/payroll/runs/{run_id}/complete", headers=owner)
        assert response.json()["status"] == "completed"

        response = await client.get(f"{API}/payroll/employees/{employee.id}/payslips", headers=owner)
        payslip = response.json()[0]
        assert payslip["payslip_number"] == "PAY-2026-01-001-0001"
        assert Decimal(payslip["tax_amount"]) == Decimal("65300.00")

        response = await client.get(
            f"{API}/payroll/runs/{run_id}/nibss-file", headers=owner, params={"file_date": "2026-01-31"},
        )
        assert response.status_code == 200
        assert response.headers["X-Record-Count"] == "1"
        assert "NIBSS_SALARY_PAY-2026-01-001_20260131.txt" in response.headers["Content-Disposition"]
        assert response.text.split("\r\n")[-1] == "T000001000000000039470000"

    async def test_recalculating_completed_run_conflicts(
        self, client, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        owner = auth_headers(test_tenant.id, StaffRole.OWNER)
        period = (await client.post(f"{API}/payroll/periods", headers=owner, json={
            "shop_id": str(test_shop.id),
            "name": "January 2026",
            "start_date": "2026-01-01",
            "end_date": "2026-01-31",
            "payment_date": "2026-01-31",
        })).json()
        run_id = (await client.post(f"{API}/payroll/runs", headers=owner, json={"payroll_period_id": period["id"]})).json()["id"]
        for step in ("calculate", "submit", "approve", "complete"):
            assert (await client.post(f"{API}/payroll/runs/{run_id}/{step}", headers=owner)).status_code == 200

        response = await client.post(f"{API}/payroll/runs/{run_id}/calculate", headers=owner)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INVALID_STATE_TRANSITION"

    async def test_period_dates_validated(self, client, test_tenant, test_shop):
        response = await client.post(
            f"{API}/payroll/periods",
            headers=auth_headers(test_tenant.id, StaffRole.OWNER),
            json={
                "shop_id": str(test_shop.id),
                "name": "Backwards",
                "start_date": "2026-02-01",
                "end_date": "2026-01-01",
                "payment_date": "2026-02-01",
            },
        )
        assert response.status_code == 422


class TestWageAdvanceEndpoints:
    """Eligibility through the API."""

    async def test_request_above_limit(self, client, test_tenant, make_employee):
        employee = await make_employee()
        headers = auth_headers(test_tenant.id, StaffRole.STAFF)

        response = await client.get(f"{API}/wage-advances/eligibility/{employee.id}", headers=headers)
        assert Decimal(response.json()["max_amount"]) == Decimal("150000.00")

        response = await client.post(
            f"{API}/wage-advances", headers=headers,
            json={"employee_id": str(employee.id), "amount": "200000"},
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "NOT_ELIGIBLE"

    async def test_repayment_schedule(self, client, test_tenant, make_employee):
        employee = await make_employee()
        staff = auth_headers(test_tenant.id, StaffRole.STAFF)
        manager = auth_headers(test_tenant.id, StaffRole.GENERAL_MANAGER)

        advance_id = (await client.post(
            f"{API}/wage-advances", headers=staff,
            json={"employee_id": str(employee.id), "amount": "100000", "installments": 3},
        )).json()["id"]
        await client.post(f"{API}/wage-advances/{advance_id}/approve", headers=manager, json={})
        await client.post(
            f"{API}/wage-advances/{advance_id}/disburse", headers=manager,
            json={"repayment_start_date": "2026-02-01"},
        )

        response = await client.get(f"{API}/wage-advances/{advance_id}/schedule", headers=staff)
        assert response.status_code == 200
        rows = response.json()
        assert [Decimal(r["amount"]) for r in rows] == [
            Decimal("33333.33"), Decimal("33333.33"), Decimal("33333.34"),
        ]
        assert rows[2]["due_date"] == "2026-04-01"
        assert rows[0]["is_paid"] is False


class TestPurchaseOrderEndpoints:
    """Payment errors map to 422."""

    async def test_overpayment(self, client, test_tenant, supplier_tenant, test_shop, make_stock_item):
        beans = await make_stock_item(supplier_tenant, "BEANS-25KG", Decimal("40"))
        buyer = auth_headers(test_tenant.id, StaffRole.GENERAL_MANAGER)

        response = await client.post(f"{API}/purchase-orders", headers=buyer, json={
            "supplier_tenant_id": str(supplier_tenant.id),
            "shop_id": str(test_shop.id),
            "items": [{"supplier_stock_item_id": str(beans.id), "quantity": "10", "unit_price": "10000"}],
        })
        assert response.status_code == 201
        order_id = response.json()["id"]
        assert Decimal(response.json()["total_amount"]) == Decimal("100000.00")

        await client.post(f"{API}/purchase-orders/{order_id}/submit", headers=buyer)
        response = await client.post(
            f"{API}/purchase-orders/{order_id}/payments", headers=buyer, json={"amount": "30000"},
        )
        assert response.status_code == 201
        assert response.json()["payment_status"] == "partial"

        response = await client.post(
            f"{API}/purchase-orders/{order_id}/payments", headers=buyer, json={"amount": "70000.01"},
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "OVERPAYMENT"

    async def test_supplier_only_action(self, client, test_tenant, supplier_tenant, test_shop, make_stock_item):
        beans = await make_stock_item(supplier_tenant, "BEANS-25KG", Decimal("40"))
        buyer = auth_headers(test_tenant.id, StaffRole.OWNER)
        order_id = (await client.post(f"{API}/purchase-orders", headers=buyer, json={
            "supplier_tenant_id": str(supplier_tenant.id),
            "shop_id": str(test_shop.id),
            "items": [{"supplier_stock_item_id": str(beans.id), "quantity": "1", "unit_price": "10000"}],
        })).json()["id"]
        await client.post(f"{API}/purchase-orders/{order_id}/submit", headers=buyer)

        response = await client.post(f"{API}/purchase-orders/{order_id}/approve", headers=buyer)
        assert response.status_code == 403

        supplier = auth_headers(supplier_tenant.id, StaffRole.OWNER)
        response = await client.post(f"{API}/purchase-orders/{order_id}/approve", headers=supplier)
        assert response.status_code == 200
        assert response.json()["status"] == "approved"


class TestApprovalEndpoints:
    """Chains through the API."""

    async def test_fund_request_chain(self, client, test_tenant, test_shop):
        owner = auth_headers(test_tenant.id, StaffRole.OWNER)
        staff = auth_headers(test_tenant.id, StaffRole.STAFF)

        response = await client.post(f"{API}/approvals/chains", headers=owner, json={
            "name": "Fund requests",
            "approvable_type": "fund_request",
            "steps": [{"name": "Manager review", "required_role": "general_manager"}],
        })
        assert response.status_code == 201

        fund_request = (await client.post(f"{API}/approvals/fund-requests", headers=staff, json={
            "shop_id": str(test_shop.id), "amount": "75000", "purpose": "Gas refill",
        })).json()
        request = (await client.post(f"{API}/approvals/requests", headers=staff, json={
            "approvable_type": "fund_request", "approvable_id": fund_request["id"],
        })).json()

        response = await client.post(f"{API}/approvals/requests/{request['id']}/approve", headers=staff, json={})
        assert response.status_code == 403

        manager = auth_headers(test_tenant.id, StaffRole.GENERAL_MANAGER)
        response = await client.post(f"{API}/approvals/requests/{request['id']}/approve", headers=manager, json={})
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        response = await client.get(f"{API}/approvals/fund-requests/{fund_request['id']}", headers=owner)
        assert response.json()["status"] == "approved"

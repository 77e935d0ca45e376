"""
NairaPay Core - Bank Schedule Service

Salary bank schedules for a completed pay run and the NIBSS fixed-width
bulk payment file built from them.

Every payslip is checked before inclusion: 10-digit NUBAN, a bank name
that maps to a known bank code, and positive net pay. Records that fail
are returned with their reasons instead of being dropped.

File layout (CRLF line endings):
    H + date(8) + company(30) + reference(16) + "SALARY"(10)
    D + seq(6) + bank code(3) + account(10) + amount in kobo(15) + name(30) + narration(30)
    T + record count(6) + total in kobo(18)
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple
import hashlib
import logging
import re
import uuid

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payroll import PayRun, PayRunStatus, Payslip
from app.models.tenant import Tenant
from app.services.pay_run_service import PayRunService
from app.utils.error_handling import (
    InvalidAccountNumberException,
    StateTransitionError,
    validate_account_number,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Nigerian bank code registry
# ============================================================================

BANK_CODES: Dict[str, str] = {
    "access bank": "044",
    "access": "044",
    "citibank": "023",
    "ecobank": "050",
    "fidelity bank": "070",
    "fidelity": "070",
    "first bank": "011",
    "first bank of nigeria": "011",
    "fcmb": "214",
    "first city monument bank": "214",
    "gtbank": "058",
    "gtb": "058",
    "guaranty trust bank": "058",
    "heritage bank": "030",
    "keystone bank": "082",
    "polaris bank": "076",
    "providus bank": "101",
    "stanbic ibtc": "221",
    "stanbic": "221",
    "standard chartered": "068",
    "sterling bank": "232",
    "sterling": "232",
    "suntrust bank": "100",
    "union bank": "032",
    "uba": "033",
    "united bank for africa": "033",
    "unity bank": "215",
    "wema bank": "035",
    "wema": "035",
    "zenith bank": "057",
    "zenith": "057",
    "jaiz bank": "301",
    "jaiz": "301",
    "taj bank": "302",
    "globus bank": "103",
    "parallex bank": "104",
    # Fintechs
    "kuda": "50211",
    "kuda bank": "50211",
    "opay": "100004",
    "palmpay": "100033",
    "moniepoint": "50515",
}

UNKNOWN_BANK_CODE = "000"



def get_bank_code(bank_name: Optional[str]) -> str:
    """Bank code for a free-text bank name; exact match first, then the longest contained name."""
    if not bank_name:
        return UNKNOWN_BANK_CODE
    normalized = " ".join(bank_name.lower().split())
    if normalized in BANK_CODES:
        return BANK_CODES[normalized]
    candidates = [key for key in BANK_CODES if key in normalized]
    if candidates:
        return BANK_CODES[max(candidates, key=len)]
    return UNKNOWN_BANK_CODE


def to_kobo(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clean_account_number(account_number: Optional[str]) -> str:
    return re.sub(r"\D", "", account_number or "")


@dataclass
class BankScheduleRecord:
    """One salary payment line"""
    payslip_id: uuid.UUID
    employee_id: uuid.UUID
    employee_name: str
    bank_name: Optional[str]
    bank_code: str
    account_number: str
    amount: Decimal
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "payslip_id": str(self.payslip_id),
            "employee_id": str(self.employee_id),
            "employee_name": self.employee_name,
            "bank_name": self.bank_name,
            "bank_code": self.bank_code,
            "account_number": self.account_number,
            "amount": str(self.amount),
        }
        if self.errors:
            data["errors"] = list(self.errors)
        return data


@dataclass
class BankSchedule:
    """Validated schedule for one pay run"""
    pay_run_id: uuid.UUID
    reference: str
    company_name: str
    narration: str
    records: List[BankScheduleRecord]
    invalid_records: List[BankScheduleRecord]

    @property
    def total_amount(self) -> Decimal:
        return sum((r.amount for r in self.records), Decimal("0.00"))

    @property
    def can_generate(self) -> bool:
        return not self.invalid_records

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pay_run_id": str(self.pay_run_id),
            "reference": self.reference,
            "valid_count": len(self.records),
            "invalid_count": len(self.invalid_records),
            "total_valid_amount": str(self.total_amount),
            "can_generate": self.can_generate,
            "records": [r.to_dict() for r in self.records],
            "invalid_records": [r.to_dict() for r in self.invalid_records],
        }


@dataclass
class NibssFile:
    """Generated NIBSS salary file"""
    filename: str
    content: str
    record_count: int
    total_amount: Decimal
    file_hash: str


def validate_payslip(payslip: Payslip) -> BankScheduleRecord:
    account_number = clean_account_number(payslip.bank_account_number)
    bank_code = get_bank_code(payslip.bank_name)
    errors = []
    if not payslip.bank_account_number:
        errors.append("Missing account number")
    else:
        try:
            validate_account_number(account_number)
        except InvalidAccountNumberException:
            errors.append("Invalid account number format (must be 10 digits)")
    if not payslip.bank_name:
        errors.append("Missing bank name")
    elif bank_code == UNKNOWN_BANK_CODE:
        errors.append(f"Unrecognized bank: {payslip.bank_name}")
    if payslip.net_pay <= 0:
        errors.append("Net pay must be positive")
    return BankScheduleRecord(
        payslip_id=payslip.id,
        employee_id=payslip.employee_id,
        employee_name=payslip.employee_name,
        bank_name=payslip.bank_name,
        bank_code=bank_code,
        account_number=account_number,
        amount=payslip.net_pay,
        errors=errors,
    )


def segregate(payslips: List[Payslip]) -> Tuple[List[BankScheduleRecord], List[BankScheduleRecord]]:
    valid, invalid = [], []
    for payslip in payslips:
        record = validate_payslip(payslip)
        (valid if record.is_valid else invalid).append(record)
    return valid, invalid


def _field(value: str, width: int) -> str:
    return value[:width].ljust(width)


def _number(value: Any, width: int) -> str:
    return str(value).rjust(width, "0")[-width:]


def render_nibss_file(schedule: BankSchedule, file_date: date) -> str:
    """Fixed-width NIBSS salary file for the valid records of a schedule."""
    lines = [
        "H"
        + file_date.strftime("%Y%m%d")
        + _field(schedule.company_name, 30)
        + _field(schedule.reference, 16)
        + _field("SALARY", 10)
    ]
    for sequence, record in enumerate(schedule.records, start=1):
        lines.append(
            "D"
            + _number(sequence, 6)
            + record.bank_code.rjust(3, "0")
            + _number(record.account_number, 10)
            + _number(to_kobo(record.amount), 15)
            + _field(record.employee_name.upper(), 30)
            + _field(schedule.narration, 30)
        )
    lines.append(
        "T"
        + _number(len(schedule.records), 6)
        + _number(to_kobo(schedule.total_amount), 18)
    )
    return "\r\n".join(lines)


class BankScheduleService:
    """Bank schedule and NIBSS file generation for completed pay runs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def build_bank_schedule(self, tenant_id: uuid.UUID, pay_run_id: uuid.UUID) -> BankSchedule:
        """
        Raises:
            StateTransitionError: the pay run is not completed
        """
        pay_run: PayRun = await PayRunService(self.db).get_pay_run(tenant_id, pay_run_id)
        if pay_run.status != PayRunStatus.COMPLETED:
            raise StateTransitionError("PayRun", pay_run.status, "build a bank schedule for")

        result = await self.db.execute(
            select(Payslip)
            .where(and_(Payslip.pay_run_id == pay_run_id, Payslip.tenant_id == tenant_id))
            .order_by(Payslip.payslip_number)
        )
        valid, invalid = segregate(list(result.scalars().all()))
        tenant = await self.db.get(Tenant, tenant_id)

        if invalid:
            logger.warning(
                "Pay run %s bank schedule: %d invalid record(s) segregated",
                pay_run.reference, len(invalid),
            )
        return BankSchedule(
            pay_run_id=pay_run.id,
            reference=pay_run.reference,
            company_name=(tenant.name if tenant else "COMPANY").upper(),
            narration=f"Salary {pay_run.payroll_period.name}",
            records=valid,
            invalid_records=invalid,
        )

    async def generate_nibss_file(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        file_date: Optional[date] = None,
    ) -> NibssFile:
        schedule = await self.build_bank_schedule(tenant_id, pay_run_id)
        file_date = file_date or date.today()
        content = render_nibss_file(schedule, file_date)
        logger.info(
            "NIBSS file generated for %s: %d record(s), total %s",
            schedule.reference, len(schedule.records), schedule.total_amount,
        )
        return NibssFile(
            filename=f"NIBSS_SALARY_{schedule.reference}_{file_date:%Y%m%d}.txt",
            content=content,
            record_count=len(schedule.records),
            total_amount=schedule.total_amount,
            file_hash=hashlib.sha256(content.encode()).hexdigest(),
        )

"""Domain records shared by the extractor, the Xero client and the migration run."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

# Canonical Xero leave type names
UNPAID_LEAVE = "Other Unpaid Leave"
COMPASSIONATE_LEAVE = "Compassionate Leave (paid)"
JURY_DUTY_LEAVE = "Jury Duty"
PERSONAL_LEAVE = "Personal/Carer's Leave"
ANNUAL_LEAVE = "Annual Leave"


def to_xero_date(value: date) -> str:
    """Format a date the way the Xero Payroll AU v1.0 API expects (/Date(ms)/)."""
    midnight = datetime(value.year, value.month, value.day, tzinfo=UTC)
    return f"/Date({int(midnight.timestamp() * 1000)})/"


@dataclass(frozen=True)
class LeaveRequestRow:
    """One leave entry extracted from the uploaded spreadsheet."""

    employee_name: str
    org_name: str
    leave_type: str
    leave_date: date
    hours: float
    description: str = ""


@dataclass(frozen=True)
class Connection:
    """A Xero organisation the app is authorised against."""

    tenant_id: str
    tenant_type: str
    org_name: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Connection":
        return cls(
            tenant_id=data.get("tenantId", ""),
            tenant_type=data.get("tenantType", ""),
            org_name=data.get("tenantName", ""),
        )


@dataclass(frozen=True)
class Employee:
    """Payroll identity of an employee (balances are never cached with it)."""

    employee_id: str
    first_name: str
    last_name: str
    status: str = ""
    payroll_calendar_id: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Employee":
        return cls(
            employee_id=data.get("EmployeeID", ""),
            first_name=data.get("FirstName", ""),
            last_name=data.get("LastName", ""),
            status=data.get("Status", ""),
            payroll_calendar_id=data.get("PayrollCalendarID", ""),
        )


@dataclass(frozen=True)
class LeaveBalance:
    """Remaining units for one leave type of one employee."""

    leave_type: str
    leave_type_id: str
    units: float
    type_of_units: str = "Hours"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "LeaveBalance":
        return cls(
            leave_type=data.get("LeaveName", ""),
            leave_type_id=data.get("LeaveTypeID", ""),
            units=float(data.get("NumberOfUnits", 0) or 0),
            type_of_units=data.get("TypeOfUnits", "Hours"),
        )


@dataclass(frozen=True)
class PayrollCalendarEntry:
    """Payroll calendar id and the next payment date (already Xero-formatted)."""

    calendar_id: str
    payment_date: str
    calendar_type: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PayrollCalendarEntry":
        return cls(
            calendar_id=data.get("PayrollCalendarID", ""),
            payment_date=data.get("PaymentDate", ""),
            calendar_type=data.get("CalendarType", ""),
        )


@dataclass(frozen=True)
class EmployeePage:
    """One page of the employee listing plus the observed rate-limit quota."""

    employees: list[Employee]
    remaining_quota: int | None = None


@dataclass(frozen=True)
class LeaveBalanceResult:
    """Live leave balances for an employee plus the observed rate-limit quota."""

    balances: list[LeaveBalance]
    remaining_quota: int | None = None


@dataclass(frozen=True)
class LeaveApplication:
    """A single leave application to post to Xero.

    ``leave_type`` is the type actually applied (the unpaid type for the
    unpaid portion) while ``original_leave_type`` is what was requested.
    """

    tenant_id: str
    org_name: str
    employee_id: str
    employee_name: str
    leave_type_id: str
    leave_type: str
    original_leave_type: str
    leave_date: date
    units: float
    pay_period_end_date: str
    description: str = ""

    @property
    def title(self) -> str:
        if self.description:
            return self.description
        return f"{self.leave_type} {self.leave_date:%d/%m}"

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the LeaveApplications request body element."""
        xero_date = to_xero_date(self.leave_date)
        return {
            "EmployeeID": self.employee_id,
            "LeaveTypeID": self.leave_type_id,
            "StartDate": xero_date,
            "EndDate": xero_date,
            "Title": self.title,
            "LeavePeriods": [
                {
                    "PayPeriodEndDate": self.pay_period_end_date,
                    "NumberOfUnits": self.units,
                }
            ],
        }


@dataclass
class RunResult:
    """Outcome of one migration run, split into failures and audit lines."""

    errors: list[str] = field(default_factory=list)
    successes: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

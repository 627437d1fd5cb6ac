"""Pytest configuration and fixtures."""

import asyncio
import json
import os
from collections import defaultdict
from datetime import date
from typing import Any

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("XERO_AUTH_TOKEN_FILE", "/tmp/leave-migrator-test-token.json")

from leave_migrator.clients import NonRetryableError, XeroAPIError  # noqa: E402
from leave_migrator.models import (  # noqa: E402
    Connection,
    Employee,
    EmployeePage,
    LeaveApplication,
    LeaveBalance,
    LeaveBalanceResult,
    LeaveRequestRow,
    PayrollCalendarEntry,
)

ACME_TENANT = "tenant-acme"
JANE_ID = "emp-jane"
CALENDAR_ID = "cal-weekly"
PAYMENT_DATE = "/Date(1593561600000+0000)/"

LEAVE_TYPE_IDS = {
    "Annual Leave": "lt-annual",
    "Personal/Carer's Leave": "lt-personal",
    "Compassionate Leave (paid)": "lt-compassionate",
    "Jury Duty": "lt-jury",
    "Long Service Leave": "lt-long-service",
    "Other Unpaid Leave": "lt-unpaid",
}


def make_balances(**units: float) -> list[LeaveBalance]:
    """Balances for every known leave type; keyword overrides by short name."""
    defaults = {
        "Annual Leave": units.get("annual", 0.0),
        "Personal/Carer's Leave": units.get("personal", 0.0),
        "Compassionate Leave (paid)": units.get("compassionate", 0.0),
        "Jury Duty": units.get("jury", 0.0),
        "Long Service Leave": units.get("long_service", 0.0),
        "Other Unpaid Leave": 0.0,
    }
    return [
        LeaveBalance(leave_type=name, leave_type_id=LEAVE_TYPE_IDS[name], units=value)
        for name, value in defaults.items()
    ]


def make_row(
    hours: float,
    leave_type: str = "Annual Leave",
    employee_name: str = "Jane Doe",
    org_name: str = "Acme",
    description: str = "",
) -> LeaveRequestRow:
    return LeaveRequestRow(
        employee_name=employee_name,
        org_name=org_name,
        leave_type=leave_type,
        leave_date=date(2020, 7, 1),
        hours=hours,
        description=description,
    )


class FakePayrollClient:
    """In-memory stand-in for the Xero payroll API.

    ``fail`` holds operation names that raise, ``failing_submissions`` holds
    employee ids whose leave applications are rejected. With
    ``apply_submissions`` set, accepted applications are deducted from the
    employee's balance, like Xero does.
    """

    def __init__(self) -> None:
        self.connections = [Connection(ACME_TENANT, "ORGANISATION", "Acme")]
        self.employees: dict[str, list[Employee]] = {
            ACME_TENANT: [
                Employee(
                    employee_id=JANE_ID,
                    first_name="Jane",
                    last_name="Doe",
                    status="ACTIVE",
                    payroll_calendar_id=CALENDAR_ID,
                )
            ]
        }
        self.balances: dict[str, list[LeaveBalance]] = {JANE_ID: make_balances()}
        self.calendars: dict[str, list[PayrollCalendarEntry]] = {
            ACME_TENANT: [PayrollCalendarEntry(CALENDAR_ID, PAYMENT_DATE, "WEEKLY")]
        }
        self.remaining_quota: int | None = 60
        self.fail: set[str] = set()
        self.failing_submissions: set[str] = set()
        self.apply_submissions = False
        self.submission_delay = 0.0
        self.calls: dict[str, list[tuple[Any, ...]]] = defaultdict(list)
        self.submitted: list[LeaveApplication] = []

    def _check(self, operation: str, *args: Any) -> None:
        self.calls[operation].append(args)
        if operation in self.fail:
            raise NonRetryableError(f"failed to call {operation} with cause 400 non retryable")

    async def list_connections(self) -> list[Connection]:
        self._check("list_connections")
        return list(self.connections)

    async def list_employees(self, tenant_id: str, page: int = 1) -> EmployeePage:
        self._check("list_employees", tenant_id, page)
        everyone = self.employees.get(tenant_id, [])
        start = (page - 1) * 100
        return EmployeePage(everyone[start : start + 100], self.remaining_quota)

    async def get_leave_balance(self, tenant_id: str, employee_id: str) -> LeaveBalanceResult:
        self._check("get_leave_balance", tenant_id, employee_id)
        return LeaveBalanceResult(list(self.balances.get(employee_id, [])), self.remaining_quota)

    async def list_payroll_calendars(self, tenant_id: str) -> list[PayrollCalendarEntry]:
        self._check("list_payroll_calendars", tenant_id)
        return list(self.calendars.get(tenant_id, []))

    async def submit_leave_application(self, application: LeaveApplication) -> None:
        self.calls["submit_leave_application"].append((application,))
        await asyncio.sleep(self.submission_delay)
        if application.employee_id in self.failing_submissions:
            raise XeroAPIError("failed to call EmployeeLeaveApplication with cause 400 non retryable")
        self.submitted.append(application)
        if self.apply_submissions:
            self.balances[application.employee_id] = [
                LeaveBalance(b.leave_type, b.leave_type_id, b.units - application.units)
                if b.leave_type_id == application.leave_type_id
                else b
                for b in self.balances[application.employee_id]
            ]


class RecordingReporter:
    """Reporter that keeps every report it is asked to send."""

    def __init__(self) -> None:
        self.reports: list[tuple[list[str], list[str]]] = []

    async def send(self, errors, successes) -> None:
        self.reports.append((list(errors), list(successes)))


@pytest.fixture
def fake_client():
    return FakePayrollClient()


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def token_file(tmp_path):
    """A token file like the one written by the OAuth callback."""
    path = tmp_path / "xero_session.json"
    path.write_text(
        json.dumps({"access_token": "access-token-123", "refresh_token": "refresh-token-123"})
    )
    return path


@pytest.fixture
def mock_employees_response():
    """Mock Xero Employees page response."""
    return {
        "Status": "OK",
        "Employees": [
            {
                "EmployeeID": JANE_ID,
                "FirstName": "Jane",
                "LastName": "Doe",
                "Status": "ACTIVE",
                "PayrollCalendarID": CALENDAR_ID,
            }
        ],
    }


@pytest.fixture
def mock_leave_balance_response():
    """Mock Xero single employee response carrying leave balances."""
    return {
        "Employees": [
            {
                "EmployeeID": JANE_ID,
                "FirstName": "Jane",
                "LastName": "Doe",
                "LeaveBalances": [
                    {
                        "LeaveName": "Annual Leave",
                        "LeaveTypeID": "lt-annual",
                        "NumberOfUnits": 20.5,
                        "TypeOfUnits": "Hours",
                    },
                    {
                        "LeaveName": "Other Unpaid Leave",
                        "LeaveTypeID": "lt-unpaid",
                        "NumberOfUnits": 0,
                        "TypeOfUnits": "Hours",
                    },
                ],
            }
        ]
    }

"""Interface the migration core consumes from a payroll API client."""

from typing import Protocol

from leave_migrator.models import (
    Connection,
    EmployeePage,
    LeaveApplication,
    LeaveBalanceResult,
    PayrollCalendarEntry,
)


class PayrollAPI(Protocol):
    """Remote payroll operations used by a migration run.

    Implementations raise ``XeroAPIError`` (or a subclass) on failure and
    handle their own retries.
    """

    async def list_connections(self) -> list[Connection]: ...

    async def list_employees(self, tenant_id: str, page: int = 1) -> EmployeePage: ...

    async def get_leave_balance(
        self, tenant_id: str, employee_id: str
    ) -> LeaveBalanceResult: ...

    async def list_payroll_calendars(self, tenant_id: str) -> list[PayrollCalendarEntry]: ...

    async def submit_leave_application(self, application: LeaveApplication) -> None: ...

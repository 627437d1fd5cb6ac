"""Per-run lookup caches: organisations, employees and payroll calendars.

All three are filled by the sequential driver loop only, so they need no
locking even though leave submissions run concurrently.
"""

from collections.abc import Iterable

import structlog

from leave_migrator.clients import EMPLOYEES_PAGE_SIZE, PayrollAPI, XeroAPIError
from leave_migrator.models import Connection, Employee
from leave_migrator.throttle import RateLimitState

logger = structlog.get_logger(__name__)


class RowLookupError(Exception):
    """Base class for failures that stop a row before reconciliation."""


class OrganizationNotFoundError(RowLookupError):
    def __init__(self, org_name: str):
        super().__init__(f"Failed to get Organization details from Xero. Organization: {org_name}.")
        self.org_name = org_name


class EmployeeDirectoryError(RowLookupError):
    def __init__(self, org_name: str):
        super().__init__(f"Failed to fetch employees from Xero. Organization: {org_name}.")
        self.org_name = org_name


class PayrollCalendarError(RowLookupError):
    """Raised for every row of a tenant whose calendars could not be fetched.

    ``repeated`` is False only for the first row, so the run reports the
    failure once.
    """

    def __init__(self, org_name: str, repeated: bool = False):
        super().__init__(
            "Failed to fetch employee payroll calendar settings from Xero. "
            f"Organization: {org_name}. Please reupload entry for this ORG."
        )
        self.org_name = org_name
        self.repeated = repeated


class OrganizationResolver:
    """Maps organisation display names to Xero tenant ids."""

    def __init__(self, connections: Iterable[Connection]):
        self._tenants = {c.org_name: c.tenant_id for c in connections}

    def __len__(self) -> int:
        return len(self._tenants)

    def resolve(self, org_name: str) -> str:
        try:
            return self._tenants[org_name]
        except KeyError:
            raise OrganizationNotFoundError(org_name) from None


class EmployeeDirectory:
    """Lazily filled map of ``"First Last"`` to employee, per organisation."""

    def __init__(self, client: PayrollAPI, rate_limit: RateLimitState):
        self._client = client
        self._rate_limit = rate_limit
        self._employees: dict[str, dict[str, Employee]] = {}
        self._failed: set[str] = set()

    def is_loaded(self, org_name: str) -> bool:
        return org_name in self._employees

    async def ensure(self, tenant_id: str, org_name: str) -> None:
        """Fetch every page of an organisation's employees once per run.

        A failure on any page discards the whole organisation and is
        remembered, so later rows of that organisation fail without another
        round trip.
        """
        if org_name in self._employees:
            return
        if org_name in self._failed:
            raise EmployeeDirectoryError(org_name)

        by_name: dict[str, Employee] = {}
        page = 1
        while True:
            try:
                result = await self._client.list_employees(tenant_id, page)
            except XeroAPIError as e:
                logger.warning(
                    "employee_directory_fetch_failed",
                    org=org_name,
                    page=page,
                    error=str(e),
                )
                self._failed.add(org_name)
                raise EmployeeDirectoryError(org_name) from e

            self._rate_limit.observe(result.remaining_quota)
            for employee in result.employees:
                by_name[employee.display_name] = employee

            if len(result.employees) < EMPLOYEES_PAGE_SIZE:
                break
            page += 1

        self._employees[org_name] = by_name
        logger.info("employee_directory_loaded", org=org_name, employees=len(by_name), pages=page)

    def lookup(self, org_name: str, display_name: str) -> Employee | None:
        return self._employees.get(org_name, {}).get(display_name)


class PayrollCalendarCache:
    """Payroll calendar id to next payment date, filled once per tenant."""

    def __init__(self, client: PayrollAPI):
        self._client = client
        self._payment_dates: dict[str, str] = {}
        self._loaded: set[str] = set()
        self._failed: set[str] = set()

    def is_loaded(self, tenant_id: str) -> bool:
        return tenant_id in self._loaded

    async def ensure(self, tenant_id: str, org_name: str) -> None:
        if tenant_id in self._loaded:
            return
        if tenant_id in self._failed:
            raise PayrollCalendarError(org_name, repeated=True)

        try:
            calendars = await self._client.list_payroll_calendars(tenant_id)
        except XeroAPIError as e:
            logger.warning("payroll_calendar_fetch_failed", org=org_name, error=str(e))
            self._failed.add(tenant_id)
            raise PayrollCalendarError(org_name) from e

        for calendar in calendars:
            self._payment_dates[calendar.calendar_id] = calendar.payment_date
        self._loaded.add(tenant_id)
        logger.info("payroll_calendars_loaded", org=org_name, calendars=len(calendars))

    def payment_date(self, calendar_id: str) -> str | None:
        return self._payment_dates.get(calendar_id)

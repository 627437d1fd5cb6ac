"""Leave reconciliation: split a leave request into paid and unpaid portions.

The arithmetic lives in small pure functions so each rule can be tested on
its own; ``LeaveReconciler`` wires them to the employee directory, the
payroll calendars and the live leave balance.
"""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

import structlog

from leave_migrator.clients import PayrollAPI, XeroAPIError
from leave_migrator.directory import EmployeeDirectory, PayrollCalendarCache
from leave_migrator.models import (
    ANNUAL_LEAVE,
    COMPASSIONATE_LEAVE,
    JURY_DUTY_LEAVE,
    PERSONAL_LEAVE,
    UNPAID_LEAVE,
    LeaveApplication,
    LeaveBalance,
    LeaveRequestRow,
)
from leave_migrator.throttle import RateLimitState

logger = structlog.get_logger(__name__)

# How far below zero a balance may go before the rest becomes unpaid
NEGATIVE_BALANCE_FLOORS: dict[str, float] = {
    ANNUAL_LEAVE.casefold(): -40.0,
    PERSONAL_LEAVE.casefold(): -16.0,
}

# Types that are rejected rather than topped up with unpaid leave
NO_UNPAID_FALLBACK = frozenset({COMPASSIONATE_LEAVE.casefold(), JURY_DUTY_LEAVE.casefold()})


def format_units(units: float) -> str:
    """Render hours without a trailing ``.0`` (8.0 -> "8", 7.5 -> "7.5")."""
    return f"{units:g}"


def effective_available_units(leave_type: str, balance: float) -> float:
    """Units usable before falling back to unpaid leave.

    Annual and personal leave may run negative down to their floor, so the
    headroom is the distance from the balance to the floor:

    * below the floor  -> 0
    * positive         -> |floor| + balance
    * zero or negative -> |floor - balance|

    Every other type is used as-is.
    """
    floor = NEGATIVE_BALANCE_FLOORS.get(leave_type.casefold())
    if floor is None:
        return balance
    if balance < floor:
        return 0.0
    if balance > 0:
        return abs(floor) + balance
    return abs(floor - balance)


@dataclass(frozen=True)
class LeaveSplit:
    """Paid and unpaid portions of one requested amount."""

    paid: float
    unpaid: float


def split_leave(requested: float, available: float) -> LeaveSplit:
    """Charge as much as possible against the available units.

    A request equal to the available units is fully paid.
    """
    if requested >= available:
        if available > 0:
            return LeaveSplit(paid=available, unpaid=requested - available)
        return LeaveSplit(paid=0.0, unpaid=requested)
    return LeaveSplit(paid=requested, unpaid=0.0)


def allows_unpaid_fallback(leave_type: str) -> bool:
    return leave_type.casefold() not in NO_UNPAID_FALLBACK


class ReconciliationError(Exception):
    """A row that cannot be reconciled; nothing is submitted for it."""


@dataclass
class Reconciliation:
    """Applications to submit for a row, plus non-terminal row errors."""

    applications: list[LeaveApplication] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def plan_applications(
    row: LeaveRequestRow,
    tenant_id: str,
    employee_id: str,
    payment_date: str,
    balances: Iterable[LeaveBalance],
) -> Reconciliation:
    """Decide which leave applications a row turns into (at most two)."""
    by_type = {b.leave_type.casefold(): b for b in balances}

    matched = by_type.get(row.leave_type.casefold())
    if matched is None:
        raise ReconciliationError(
            f"Leave type {row.leave_type} not found/configured in Xero for "
            f"Employee: {row.employee_name}. Organization: {row.org_name}"
        )

    available = effective_available_units(row.leave_type, matched.units)
    split = split_leave(row.hours, available)
    logger.debug(
        "leave_split",
        employee=row.employee_name,
        leave_type=row.leave_type,
        balance=matched.units,
        available=available,
        paid=split.paid,
        unpaid=split.unpaid,
    )

    result = Reconciliation()

    def application(leave_type_id: str, leave_type: str, units: float) -> LeaveApplication:
        return LeaveApplication(
            tenant_id=tenant_id,
            org_name=row.org_name,
            employee_id=employee_id,
            employee_name=row.employee_name,
            leave_type_id=leave_type_id,
            leave_type=leave_type,
            original_leave_type=row.leave_type,
            leave_date=row.leave_date,
            units=units,
            pay_period_end_date=payment_date,
            description=row.description,
        )

    if split.paid > 0:
        result.applications.append(
            application(matched.leave_type_id, row.leave_type, split.paid)
        )

    if split.unpaid > 0:
        unpaid = by_type.get(UNPAID_LEAVE.casefold())
        if not allows_unpaid_fallback(row.leave_type):
            result.errors.append(
                f"Employee: {row.employee_name} has insufficient Leave balance for Leave type "
                f"{row.leave_type} requested for {format_units(split.unpaid)} hours"
            )
        elif unpaid is None:
            result.errors.append(
                f"Leave type {UNPAID_LEAVE} not found/configured in Xero for "
                f"Employee: {row.employee_name}. Organization: {row.org_name}"
            )
        else:
            result.applications.append(
                application(unpaid.leave_type_id, UNPAID_LEAVE, split.unpaid)
            )

    return result


class LeaveReconciler:
    """Resolves a row's employee, calendar and live balance, then plans it."""

    def __init__(
        self,
        client: PayrollAPI,
        directory: EmployeeDirectory,
        calendars: PayrollCalendarCache,
        rate_limit: RateLimitState,
        settle: Callable[[str, str], Awaitable[None]],
    ):
        self._client = client
        self._directory = directory
        self._calendars = calendars
        self._rate_limit = rate_limit
        self._settle = settle

    async def reconcile(self, row: LeaveRequestRow, tenant_id: str) -> Reconciliation:
        """Plan the leave applications for one row.

        Raises:
            ReconciliationError: the row cannot be processed.
        """
        employee = self._directory.lookup(row.org_name, row.employee_name)
        if employee is None:
            raise ReconciliationError(
                f"Employee not found in Xero. Employee: {row.employee_name}. "
                f"Organization: {row.org_name}"
            )

        payment_date = self._calendars.payment_date(employee.payroll_calendar_id)
        if payment_date is None:
            raise ReconciliationError(
                "Failed to fetch employee payroll calendar settings from Xero. "
                f"Employee: {row.employee_name}. Organization: {row.org_name}"
            )

        logger.info("calculating_leave", employee=row.employee_name, org=row.org_name)
        # Balance must reflect earlier applications for the same employee
        await self._settle(tenant_id, employee.employee_id)
        try:
            balance = await self._client.get_leave_balance(tenant_id, employee.employee_id)
        except XeroAPIError as e:
            logger.warning(
                "leave_balance_fetch_failed",
                employee=row.employee_name,
                org=row.org_name,
                error=str(e),
            )
            raise ReconciliationError(
                "Failed to fetch employee leave balance from Xero. "
                f"Employee: {row.employee_name}. Organization: {row.org_name}"
            ) from e
        self._rate_limit.observe(balance.remaining_quota)

        return plan_applications(
            row,
            tenant_id=tenant_id,
            employee_id=employee.employee_id,
            payment_date=payment_date,
            balances=balance.balances,
        )

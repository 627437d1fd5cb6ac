"""Concurrent submission of leave applications and collection of outcomes."""

import asyncio
import csv
import io
from collections.abc import Iterable

import structlog

from leave_migrator.clients import PayrollAPI, XeroAPIError
from leave_migrator.models import LeaveApplication
from leave_migrator.reconciliation import format_units

logger = structlog.get_logger(__name__)

ERROR_MARKER = "Error:"


def success_line(application: LeaveApplication) -> str:
    """Audit line: employee, requested type, applied type, date, hours, org.

    Fields are CSV-quoted, so names containing commas survive
    ``parse_success_line``.
    """
    leave_date = application.leave_date
    output = io.StringIO()
    csv.writer(output, lineterminator="").writerow(
        [
            application.employee_name,
            application.original_leave_type,
            application.leave_type,
            f"{leave_date.day}/{leave_date.month}/{leave_date.year}",
            format_units(application.units),
            application.org_name,
        ]
    )
    return output.getvalue()


def parse_success_line(line: str) -> list[str]:
    return next(csv.reader([line]), [])


def failure_line(application: LeaveApplication) -> str:
    return (
        f"{ERROR_MARKER} Failed to post Leave application to xero for "
        f"Employee: {application.employee_name} Organization: {application.org_name}"
    )


def is_error_line(line: str) -> bool:
    return line.startswith(ERROR_MARKER)


def partition_results(lines: Iterable[str]) -> tuple[list[str], list[str]]:
    """Split outcome lines into (errors, successes), keeping their order."""
    errors: list[str] = []
    successes: list[str] = []
    for line in lines:
        (errors if is_error_line(line) else successes).append(line)
    return errors, successes


class SubmissionDispatcher:
    """Posts leave applications as tasks of the caller's task group.

    Each task hands its outcome line to a queue; the caller drains it once
    the task group has exited, so every dispatched submission is reflected.

    Usage:
        async with asyncio.TaskGroup() as group:
            dispatcher = SubmissionDispatcher(client, group)
            dispatcher.dispatch(application)
        lines = dispatcher.drain()
    """

    def __init__(
        self,
        client: PayrollAPI,
        group: asyncio.TaskGroup,
        max_concurrency: int = 10,
    ):
        self._client = client
        self._group = group
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._results: asyncio.Queue[str] = asyncio.Queue()
        self._pending: dict[tuple[str, str], set[asyncio.Task[None]]] = {}
        self.dispatched = 0

    def dispatch(self, application: LeaveApplication) -> asyncio.Task[None]:
        """Start posting an application without waiting for it."""
        key = (application.tenant_id, application.employee_id)
        task = self._group.create_task(self._submit(application))
        pending = self._pending.setdefault(key, set())
        pending.add(task)
        task.add_done_callback(pending.discard)
        self.dispatched += 1
        return task

    async def wait_for_employee(self, tenant_id: str, employee_id: str) -> None:
        """Block until the employee's in-flight applications have completed."""
        pending = list(self._pending.get((tenant_id, employee_id), ()))
        if pending:
            logger.debug("waiting_for_pending_applications", employee_id=employee_id, count=len(pending))
            await asyncio.wait(pending)

    async def _submit(self, application: LeaveApplication) -> None:
        async with self._semaphore:
            logger.info(
                "applying_leave",
                employee=application.employee_name,
                org=application.org_name,
                leave_type=application.leave_type,
                units=application.units,
            )
            try:
                await self._client.submit_leave_application(application)
            except XeroAPIError as e:
                logger.error(
                    "leave_application_failed",
                    employee=application.employee_name,
                    org=application.org_name,
                    payload=application.to_payload(),
                    error=str(e),
                )
                await self._results.put(failure_line(application))
                return
        await self._results.put(success_line(application))

    def drain(self) -> list[str]:
        """Collect every outcome queued so far (order is not guaranteed)."""
        lines: list[str] = []
        while not self._results.empty():
            lines.append(self._results.get_nowait())
        return lines

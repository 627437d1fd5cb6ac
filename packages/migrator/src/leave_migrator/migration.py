"""Migration driver - moves KROW leave entries into Xero Payroll.

One run:
1. Extracts leave rows from the uploaded workbook
2. Loads the Xero connections once (the only failure that aborts the run)
3. Walks the rows in file order, filling the employee and payroll calendar
   caches on first use of each organisation
4. Reconciles each row against the live leave balance and dispatches the
   resulting paid/unpaid applications concurrently
5. Waits for every application, partitions the outcomes and always sends
   the report

Usage:
    async with XeroPayrollClient() as client:
        errors = await LeaveMigration(client, SESReportMailer()).run_migration(path)
"""

import asyncio
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path
from uuid import uuid4

import structlog

from leave_migrator.clients import PayrollAPI, XeroAPIError, XeroPayrollClient
from leave_migrator.config import bind_run_context, get_settings
from leave_migrator.directory import (
    EmployeeDirectory,
    OrganizationResolver,
    PayrollCalendarCache,
    PayrollCalendarError,
    RowLookupError,
)
from leave_migrator.extraction import extract_leave_requests
from leave_migrator.models import LeaveRequestRow, RunResult
from leave_migrator.reconciliation import LeaveReconciler, ReconciliationError
from leave_migrator.reporting import Reporter, SESReportMailer, WorkbookReporter
from leave_migrator.submission import SubmissionDispatcher, partition_results
from leave_migrator.throttle import RateLimitState

logger = structlog.get_logger(__name__)


def _append_unique(errors: list[str], message: str) -> None:
    if message and message not in errors:
        errors.append(message)


class LeaveMigration:
    """Runs leave migrations against one payroll client and reporter.

    Nothing survives between runs: caches, the rate-limit reading and the
    collected outcomes all belong to a single ``migrate`` call.
    """

    def __init__(
        self,
        client: PayrollAPI,
        reporter: Reporter,
        rate_limit_threshold: int | None = None,
        rate_limit_cooldown: float | None = None,
        settle_delay: float | None = None,
        max_concurrent_submissions: int | None = None,
    ):
        settings = get_settings()
        self._client = client
        self._reporter = reporter
        self._rate_limit_threshold = (
            rate_limit_threshold
            if rate_limit_threshold is not None
            else settings.rate_limit_threshold
        )
        self._rate_limit_cooldown = (
            rate_limit_cooldown
            if rate_limit_cooldown is not None
            else settings.rate_limit_cooldown
        )
        self._settle_delay = (
            settle_delay if settle_delay is not None else settings.balance_settle_delay
        )
        self._max_concurrent_submissions = (
            max_concurrent_submissions
            if max_concurrent_submissions is not None
            else settings.max_concurrent_submissions
        )
        self.last_rate_limit: RateLimitState | None = None

    async def run_migration(self, source: Path | str) -> list[str] | None:
        """Migrate every leave entry in the workbook.

        Returns None when everything was applied, otherwise the errors. The
        report is sent either way.
        """
        extraction = await asyncio.to_thread(extract_leave_requests, source)
        result = await self.migrate(extraction.rows, extraction.errors)
        return result.errors or None

    async def migrate(
        self,
        rows: Sequence[LeaveRequestRow],
        extraction_errors: Iterable[str] = (),
    ) -> RunResult:
        bind_run_context(uuid4().hex[:12])
        result = RunResult(errors=list(extraction_errors))
        logger.info("migration_started", rows=len(rows), extraction_errors=len(result.errors))

        if not rows:
            await self._report(result)
            return result

        try:
            connections = await self._client.list_connections()
        except XeroAPIError as e:
            message = (
                f"Failed to fetch connections from Xero: {e}. "
                "Please try again later or contact admin."
            )
            logger.error("connections_fetch_failed", error=str(e))
            result.errors.append(message)
            await self._report(result)
            return result

        resolver = OrganizationResolver(connections)
        rate_limit = RateLimitState(
            threshold=self._rate_limit_threshold,
            cooldown_seconds=self._rate_limit_cooldown,
        )
        self.last_rate_limit = rate_limit
        directory = EmployeeDirectory(self._client, rate_limit)
        calendars = PayrollCalendarCache(self._client)

        row_errors: list[str] = []
        reconciliation_errors: list[str] = []

        async with asyncio.TaskGroup() as group:
            dispatcher = SubmissionDispatcher(
                self._client, group, max_concurrency=self._max_concurrent_submissions
            )

            async def settle(tenant_id: str, employee_id: str) -> None:
                await dispatcher.wait_for_employee(tenant_id, employee_id)
                if self._settle_delay > 0:
                    await asyncio.sleep(self._settle_delay)

            reconciler = LeaveReconciler(
                self._client, directory, calendars, rate_limit, settle=settle
            )

            for row in rows:
                await rate_limit.wait_if_exhausted()

                try:
                    tenant_id = resolver.resolve(row.org_name)
                    await directory.ensure(tenant_id, row.org_name)
                    await calendars.ensure(tenant_id, row.org_name)
                except PayrollCalendarError as e:
                    if e.repeated:
                        logger.info(
                            "row_skipped_for_failed_tenant",
                            employee=row.employee_name,
                            org=row.org_name,
                        )
                    else:
                        row_errors.append(str(e))
                    continue
                except RowLookupError as e:
                    logger.info("row_lookup_failed", error=str(e))
                    row_errors.append(str(e))
                    continue

                try:
                    reconciliation = await reconciler.reconcile(row, tenant_id)
                except ReconciliationError as e:
                    logger.info("row_rejected", error=str(e))
                    _append_unique(reconciliation_errors, str(e))
                    continue

                for application in reconciliation.applications:
                    dispatcher.dispatch(application)
                for message in reconciliation.errors:
                    _append_unique(reconciliation_errors, message)

            logger.info("waiting_for_submissions", dispatched=dispatcher.dispatched)

        submission_errors, successes = partition_results(dispatcher.drain())
        result.errors.extend(row_errors)
        result.errors.extend(reconciliation_errors)
        result.errors.extend(submission_errors)
        result.successes.extend(successes)

        logger.info(
            "migration_finished",
            errors=len(result.errors),
            applied=len(result.successes),
            rate_limit_pauses=rate_limit.pauses,
        )
        await self._report(result)
        return result

    async def _report(self, result: RunResult) -> None:
        await self._reporter.send(result.errors, result.successes)


async def main() -> None:
    """Run one migration from the command line.

    Examples:
        python -m leave_migrator.migration leave.xlsx
        python -m leave_migrator.migration leave.xlsx --no-email
    """
    import argparse

    from leave_migrator.config import configure_logging

    parser = argparse.ArgumentParser(description="Migrate KROW leave entries to Xero Payroll")
    parser.add_argument("source", type=Path, help="KROW leave export (.xlsx)")
    parser.add_argument(
        "--no-email",
        action="store_true",
        help="Write the audit workbook locally instead of e-mailing the report",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Override LOG_LEVEL",
    )
    args = parser.parse_args()

    configure_logging(level=args.log_level)

    if args.source.suffix.lower() != ".xlsx":
        logger.error("unsupported_file_format", path=str(args.source))
        sys.exit(2)

    reporter: Reporter = WorkbookReporter() if args.no_email else SESReportMailer()
    async with XeroPayrollClient() as client:
        errors = await LeaveMigration(client, reporter).run_migration(args.source)

    if errors:
        for error in errors:
            print(error)
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()

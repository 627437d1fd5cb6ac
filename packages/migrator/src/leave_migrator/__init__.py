"""Leave Migrator - moves KROW leave entries into Xero Payroll."""

__version__ = "0.1.0"

from leave_migrator.clients import (
    AuthenticationError,
    NonRetryableError,
    PayrollAPI,
    RateLimitError,
    XeroAPIError,
    XeroPayrollClient,
)
from leave_migrator.config import configure_logging, get_settings
from leave_migrator.extraction import extract_leave_requests
from leave_migrator.migration import LeaveMigration
from leave_migrator.models import LeaveApplication, LeaveRequestRow, RunResult
from leave_migrator.reconciliation import effective_available_units, split_leave
from leave_migrator.reporting import SESReportMailer, WorkbookReporter

__all__ = [
    # Version
    "__version__",
    # Migration
    "LeaveMigration",
    "RunResult",
    "LeaveRequestRow",
    "LeaveApplication",
    "extract_leave_requests",
    "effective_available_units",
    "split_leave",
    # Xero client
    "PayrollAPI",
    "XeroPayrollClient",
    "XeroAPIError",
    "AuthenticationError",
    "RateLimitError",
    "NonRetryableError",
    # Reporting
    "SESReportMailer",
    "WorkbookReporter",
    # Config
    "get_settings",
    "configure_logging",
]

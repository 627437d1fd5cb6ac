"""Remote API clients for the leave migrator."""

from leave_migrator.clients.base import PayrollAPI
from leave_migrator.clients.xero import (
    EMPLOYEES_PAGE_SIZE,
    AuthenticationError,
    NonRetryableError,
    RateLimitError,
    XeroAPIError,
    XeroPayrollClient,
)

__all__ = [
    "EMPLOYEES_PAGE_SIZE",
    "PayrollAPI",
    "XeroPayrollClient",
    "XeroAPIError",
    "AuthenticationError",
    "RateLimitError",
    "NonRetryableError",
]

"""Xero Payroll (AU) API client with retry, backoff and rate-limit tracking."""

import asyncio
import json
from pathlib import Path
from typing import Any

import httpx
import structlog

from leave_migrator.config import get_settings
from leave_migrator.models import (
    Connection,
    Employee,
    EmployeePage,
    LeaveApplication,
    LeaveBalance,
    LeaveBalanceResult,
    PayrollCalendarEntry,
)

logger = structlog.get_logger(__name__)

TENANT_HEADER = "xero-tenant-id"
MIN_LIMIT_HEADER = "X-MinLimit-Remaining"
EMPLOYEES_PAGE_SIZE = 100


class XeroAPIError(Exception):
    """Base exception for Xero API errors."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class AuthenticationError(XeroAPIError):
    """Token missing, expired or rejected (401/403)."""

    pass


class RateLimitError(XeroAPIError):
    """Rate limit still exceeded after the retry budget was spent."""

    pass


class NonRetryableError(XeroAPIError):
    """Xero rejected the request and retrying will not help."""

    pass


class XeroPayrollClient:
    """Async client for the Xero connections and Payroll AU v1.0 endpoints.

    The access token is read from the token file on every call, so a
    re-authorisation through the OAuth flow takes effect without a restart.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token_file: Path | str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_initial: float | None = None,
        backoff_max: float | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.xero_endpoint).rstrip("/")
        self._token_file = Path(token_file or settings.xero_auth_token_file)
        self._timeout = timeout if timeout is not None else settings.xero_timeout
        self._max_retries = (
            max_retries if max_retries is not None else settings.xero_max_retries
        )
        self._backoff_initial = (
            backoff_initial
            if backoff_initial is not None
            else settings.xero_backoff_initial
        )
        self._backoff_max = (
            backoff_max if backoff_max is not None else settings.xero_backoff_max
        )

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "XeroPayrollClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # === Authentication ===

    def _load_access_token(self) -> str:
        """Read the access token written by the OAuth callback."""
        try:
            data = json.loads(self._token_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("access_token_unreadable", path=str(self._token_file), error=str(e))
            raise AuthenticationError(f"error fetching the access token: {e}") from e

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationError("error fetching the access token: no access_token")
        return str(token)

    def _get_headers(self, tenant_id: str | None = None) -> dict[str, str]:
        """Get request headers with auth token and tenant."""
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {self._load_access_token()}",
        }
        if tenant_id:
            headers[TENANT_HEADER] = tenant_id
        return headers

    # === Generic Request Method ===

    def _backoff(self, retry_count: int) -> float:
        return min(self._backoff_initial * 2**retry_count, self._backoff_max)

    @staticmethod
    def _remaining_quota(response: httpx.Response) -> int | None:
        """Parse the per-minute quota header; None when Xero did not send it."""
        raw = response.headers.get(MIN_LIMIT_HEADER)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning("invalid_rate_limit_header", value=raw)
            return None

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        tenant_id: str | None = None,
        params: dict[str, Any] | None = None,
        payload: Any = None,
        retry_count: int = 0,
    ) -> tuple[Any, int | None]:
        """Make an authenticated API request with retry logic.

        Returns the decoded body and the remaining per-minute quota.
        """
        client = await self._get_client()
        headers = await asyncio.to_thread(self._get_headers, tenant_id)

        try:
            response = await client.request(
                method=method,
                url=path,
                params=params,
                json=payload,
                headers=headers,
            )
        except httpx.RequestError as e:
            if retry_count < self._max_retries:
                delay = self._backoff(retry_count)
                logger.warning(
                    "xero_request_retry",
                    operation=operation,
                    attempt=retry_count + 1,
                    delay=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
                return await self._request(
                    operation, method, path, tenant_id, params, payload, retry_count + 1
                )
            raise XeroAPIError(
                f"failed, retry limit expired: failed to execute {operation} request: {e}"
            ) from e

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(
                f"failed to call {operation} with cause {status} unauthorized",
                status_code=status,
            )

        if status == 429:
            message = f"failed to call {operation} with cause 429 rate limit exceeded"
            if retry_count < self._max_retries:
                retry_after = response.headers.get("Retry-After")
                delay = (
                    float(retry_after)
                    if retry_after and retry_after.isdigit()
                    else self._backoff(retry_count)
                )
                logger.warning(
                    "xero_rate_limited",
                    operation=operation,
                    attempt=retry_count + 1,
                    delay=delay,
                )
                await asyncio.sleep(delay)
                return await self._request(
                    operation, method, path, tenant_id, params, payload, retry_count + 1
                )
            raise RateLimitError(
                f"failed, retry limit expired: {message}",
                status_code=429,
                details={"retry_after": response.headers.get("Retry-After")},
            )

        if status >= 400:
            try:
                error_detail = response.json() if response.content else {}
            except ValueError:
                error_detail = {"raw": response.text[:500] if response.text else "empty response"}
            logger.info("xero_request_rejected", operation=operation, status_code=status)
            raise NonRetryableError(
                f"failed to call {operation} with cause {status} non retryable",
                status_code=status,
                details=error_detail,
            )

        try:
            body = response.json() if response.content else {}
        except ValueError as e:
            raise XeroAPIError(
                f"there was an error unmarshalling the {operation} response: {e}",
                status_code=status,
            ) from e
        return body, self._remaining_quota(response)

    @staticmethod
    def _expect_dict(body: Any, operation: str) -> dict[str, Any]:
        if not isinstance(body, dict):
            raise XeroAPIError(f"Invalid {operation} response format")
        return body

    @staticmethod
    def _unmarshal_error(operation: str, error: Exception) -> XeroAPIError:
        logger.error("xero_response_malformed", operation=operation, error=str(error))
        return XeroAPIError(f"there was an error unmarshalling the {operation} response: {error}")

    # === Connections ===

    async def list_connections(self) -> list[Connection]:
        """List the organisations (tenants) the token is authorised for."""
        body, _ = await self._request("GetConnections", "GET", "/connections")
        if not isinstance(body, list):
            raise XeroAPIError("Invalid connections response format")
        try:
            return [Connection.from_api(item) for item in body]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise self._unmarshal_error("GetConnections", e) from e

    # === Employees ===

    async def list_employees(self, tenant_id: str, page: int = 1) -> EmployeePage:
        """Fetch one page (up to 100 employees) of a tenant's employees."""
        logger.info("fetching_employees", tenant_id=tenant_id, page=page)
        body, remaining = await self._request(
            "GetEmployees",
            "GET",
            "/payroll.xro/1.0/Employees",
            tenant_id=tenant_id,
            params={"page": page},
        )
        body = self._expect_dict(body, "GetEmployees")
        try:
            employees = [Employee.from_api(item) for item in body.get("Employees") or []]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise self._unmarshal_error("GetEmployees", e) from e
        return EmployeePage(employees=employees, remaining_quota=remaining)

    async def get_leave_balance(self, tenant_id: str, employee_id: str) -> LeaveBalanceResult:
        """Fetch the live leave balances of one employee."""
        logger.info("fetching_leave_balance", tenant_id=tenant_id, employee_id=employee_id)
        body, remaining = await self._request(
            "EmployeeLeaveBalance",
            "GET",
            f"/payroll.xro/1.0/Employees/{employee_id}",
            tenant_id=tenant_id,
        )
        employees = self._expect_dict(body, "EmployeeLeaveBalance").get("Employees") or []
        if not employees:
            raise XeroAPIError(f"Employee {employee_id} missing from leave balance response")
        try:
            balances = [
                LeaveBalance.from_api(item) for item in employees[0].get("LeaveBalances") or []
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise self._unmarshal_error("EmployeeLeaveBalance", e) from e
        return LeaveBalanceResult(balances=balances, remaining_quota=remaining)

    # === Payroll Calendars ===

    async def list_payroll_calendars(self, tenant_id: str) -> list[PayrollCalendarEntry]:
        """Fetch the payroll calendars of a tenant."""
        logger.info("fetching_payroll_calendars", tenant_id=tenant_id)
        body, _ = await self._request(
            "GetPayrollCalendars",
            "GET",
            "/payroll.xro/1.0/PayrollCalendars",
            tenant_id=tenant_id,
        )
        calendars = self._expect_dict(body, "GetPayrollCalendars").get("PayrollCalendars") or []
        try:
            return [PayrollCalendarEntry.from_api(item) for item in calendars]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise self._unmarshal_error("GetPayrollCalendars", e) from e

    # === Leave Applications ===

    async def submit_leave_application(self, application: LeaveApplication) -> None:
        """Post a single leave application."""
        await self._request(
            "EmployeeLeaveApplication",
            "POST",
            "/payroll.xro/1.0/LeaveApplications",
            tenant_id=application.tenant_id,
            payload=[application.to_payload()],
        )

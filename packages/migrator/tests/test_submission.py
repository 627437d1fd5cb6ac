"""Tests for concurrent leave application submission."""

import asyncio
from dataclasses import replace
from datetime import date

import pytest

from conftest import ACME_TENANT, JANE_ID
from leave_migrator.models import LeaveApplication
from leave_migrator.submission import (
    SubmissionDispatcher,
    failure_line,
    is_error_line,
    parse_success_line,
    partition_results,
    success_line,
)


def make_application(employee_id=JANE_ID, leave_type="Annual Leave", units=7.5):
    return LeaveApplication(
        tenant_id=ACME_TENANT,
        org_name="Acme",
        employee_id=employee_id,
        employee_name="Jane Doe",
        leave_type_id="lt-annual",
        leave_type=leave_type,
        original_leave_type="Annual Leave",
        leave_date=date(2020, 7, 1),
        units=units,
        pay_period_end_date="/Date(1593561600000+0000)/",
    )


class TestResultLines:
    """Tests for outcome line formatting."""

    def test_success_line(self):
        line = success_line(make_application(leave_type="Other Unpaid Leave", units=8.0))

        assert line == "Jane Doe,Annual Leave,Other Unpaid Leave,1/7/2020,8,Acme"
        assert not is_error_line(line)

    def test_names_with_commas_round_trip(self):
        """Test commas inside names do not shift the audit columns."""
        application = replace(make_application(), employee_name="Doe, Jane", org_name="Acme, Inc")

        line = success_line(application)

        assert line == '"Doe, Jane",Annual Leave,Annual Leave,1/7/2020,7.5,"Acme, Inc"'
        assert parse_success_line(line) == [
            "Doe, Jane",
            "Annual Leave",
            "Annual Leave",
            "1/7/2020",
            "7.5",
            "Acme, Inc",
        ]

    def test_failure_line(self):
        line = failure_line(make_application())

        assert line == (
            "Error: Failed to post Leave application to xero for "
            "Employee: Jane Doe Organization: Acme"
        )
        assert is_error_line(line)

    def test_partition_keeps_order(self):
        errors, successes = partition_results(["a,b", "Error: one", "c,d", "Error: two"])

        assert errors == ["Error: one", "Error: two"]
        assert successes == ["a,b", "c,d"]


class TestSubmissionDispatcher:
    """Tests for SubmissionDispatcher."""

    @pytest.mark.asyncio
    async def test_every_outcome_collected(self, fake_client):
        """Test successes and failures are all drained after the group exits."""
        fake_client.failing_submissions.add("emp-bad")

        async with asyncio.TaskGroup() as group:
            dispatcher = SubmissionDispatcher(fake_client, group, max_concurrency=2)
            dispatcher.dispatch(make_application())
            dispatcher.dispatch(make_application(units=2))
            dispatcher.dispatch(make_application(employee_id="emp-bad"))

        errors, successes = partition_results(dispatcher.drain())

        assert dispatcher.dispatched == 3
        assert len(errors) == 1
        assert sorted(successes) == [
            "Jane Doe,Annual Leave,Annual Leave,1/7/2020,2,Acme",
            "Jane Doe,Annual Leave,Annual Leave,1/7/2020,7.5,Acme",
        ]
        assert dispatcher.drain() == []

    @pytest.mark.asyncio
    async def test_wait_for_employee(self, fake_client):
        """Test waiting covers only the named employee's pending work."""
        fake_client.submission_delay = 0.01

        async with asyncio.TaskGroup() as group:
            dispatcher = SubmissionDispatcher(fake_client, group)
            dispatcher.dispatch(make_application())
            dispatcher.dispatch(make_application(units=2))

            await dispatcher.wait_for_employee(ACME_TENANT, JANE_ID)

            assert len(fake_client.submitted) == 2
            await dispatcher.wait_for_employee(ACME_TENANT, "emp-nobody")

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, fake_client):
        """Test no more than max_concurrency submissions run at once."""
        in_flight = 0
        peak = 0

        async def submit(application):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        fake_client.submit_leave_application = submit

        async with asyncio.TaskGroup() as group:
            dispatcher = SubmissionDispatcher(fake_client, group, max_concurrency=2)
            for units in range(1, 7):
                dispatcher.dispatch(make_application(units=units))

        assert peak == 2
        assert len(dispatcher.drain()) == 6

"""Audit workbook generation and report e-mail delivery."""

import asyncio
from collections.abc import Sequence
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Protocol

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError
from openpyxl import Workbook
from openpyxl.styles import Font

from leave_migrator.config import get_settings
from leave_migrator.submission import parse_success_line

logger = structlog.get_logger(__name__)

REPORT_SUBJECT = "Report: Leave Migration to Xero"
NO_ERRORS_MESSAGE = (
    "No errors found during processing leaves. Please check attached report for audit trail."
)
REPORT_HEADERS = ["Employee", "Leave Requested", "Leave Applied (Xero)", "Leave Date", "Hours", "Org"]

_NORMAL_FONT = Font(name="Liberation Serif", bold=False)
# Highlights rows where part of the request was applied as a different type
_CHANGED_FONT = Font(name="Liberation Serif", bold=True, color="FF0000")


class Reporter(Protocol):
    async def send(self, errors: Sequence[str], successes: Sequence[str]) -> None: ...


def write_audit_workbook(path: Path, success_lines: Sequence[str]) -> Path:
    """Write one worksheet row per successful leave application."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Sheet1"
    sheet.append(REPORT_HEADERS)
    for column, width in zip("ABCDEF", (20, 30, 30, 20, 20, 20)):
        sheet.column_dimensions[column].width = width

    for line in success_lines:
        cells = parse_success_line(line)
        if len(cells) < len(REPORT_HEADERS):
            logger.warning("malformed_audit_line", line=line)
            continue
        sheet.append(cells[: len(REPORT_HEADERS)])
        row = sheet.max_row
        font = _CHANGED_FONT if cells[1] != cells[2] else _NORMAL_FONT
        sheet.cell(row=row, column=2).font = font
        sheet.cell(row=row, column=3).font = font

    path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(path)
    return path


def report_body(errors: Sequence[str]) -> str:
    return "\n".join(errors) if errors else NO_ERRORS_MESSAGE


def recipients(email_to: str) -> list[str]:
    return [r.strip() for r in email_to.split(",") if r.strip()]


class SESReportMailer:
    """Sends the run report through AWS SES as a raw MIME message."""

    def __init__(
        self,
        email_to: str | None = None,
        email_from: str | None = None,
        report_file: Path | None = None,
        ses_client: Any = None,
    ):
        settings = get_settings()
        self._email_to = email_to if email_to is not None else settings.email_to
        self._email_from = email_from if email_from is not None else settings.email_from
        self._report_file = report_file or settings.report_file
        self._ses = ses_client or boto3.client("ses", region_name=settings.aws_region)

    def build_message(self, errors: Sequence[str], attachment: Path) -> MIMEMultipart:
        message = MIMEMultipart()
        message["Subject"] = REPORT_SUBJECT
        message["From"] = self._email_from
        message["To"] = self._email_to
        message.attach(MIMEText(report_body(errors), "plain"))

        part = MIMEApplication(attachment.read_bytes())
        part.add_header("Content-Disposition", "attachment", filename=attachment.name)
        message.attach(part)
        return message

    def _send_sync(self, errors: Sequence[str], successes: Sequence[str]) -> None:
        attachment = write_audit_workbook(self._report_file, successes)
        message = self.build_message(errors, attachment)
        self._ses.send_raw_email(
            Source=self._email_from,
            Destinations=recipients(self._email_to),
            RawMessage={"Data": message.as_bytes()},
        )

    async def send(self, errors: Sequence[str], successes: Sequence[str]) -> None:
        """Deliver the report; failures are logged and never reach the caller."""
        try:
            await asyncio.to_thread(self._send_sync, list(errors), list(successes))
        except (BotoCoreError, ClientError, OSError) as e:
            logger.error("report_email_failed", error=str(e))
            return
        logger.info("report_email_sent", errors=len(errors), successes=len(successes))


class WorkbookReporter:
    """Writes the audit workbook only (no e-mail), for local runs."""

    def __init__(self, report_file: Path | None = None):
        self._report_file = report_file or get_settings().report_file

    async def send(self, errors: Sequence[str], successes: Sequence[str]) -> None:
        try:
            path = await asyncio.to_thread(write_audit_workbook, self._report_file, list(successes))
        except OSError as e:
            logger.error("report_write_failed", error=str(e))
            return
        logger.info("report_written", path=str(path), errors=len(errors), successes=len(successes))

"""Read leave requests out of the uploaded KROW spreadsheet export.

Layout of the active sheet (first row is a header):

    A employee | B leave date | C hours | D leave type | E leave type (fallback)
    F organisation | G description (optional)

Leave dates must be real Excel dates (serial numbers); text such as
``28/04/2020`` is rejected so day/month ambiguity never reaches Xero.
"""

import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

import structlog
from openpyxl import load_workbook
from openpyxl.utils.datetime import from_excel
from openpyxl.utils.exceptions import InvalidFileException

from leave_migrator.models import LeaveRequestRow

logger = structlog.get_logger(__name__)

# KROW leave names -> Xero leave names, tried in order at each position
LEAVE_TYPE_ALIASES: list[tuple[str, str]] = [
    (r"Carers", "Carer's"),
    (r"(?<!Other )Unpaid", "Other Unpaid"),
    (r"Parental Leave \(10 days for new family member\)", "Parental Leave (Paid)"),
    (r"Parental Leave(?! \(Paid\))", "Parental Leave (Paid)"),
    (r"Compassionate Leave(?! \(paid\))", "Compassionate Leave (paid)"),
]

ORGANIZATION_ALIASES: list[tuple[str, str]] = [
    (r"\bCuusoo\b(?! Pty Ltd)", "Cuusoo Pty Ltd"),
]


def _alias_replacer(aliases: list[tuple[str, str]]):
    pattern = re.compile("|".join(f"({p})" for p, _ in aliases))
    replacements = [r for _, r in aliases]

    def replace(value: str) -> str:
        return pattern.sub(lambda m: replacements[m.lastindex - 1], value)

    return replace


canonical_leave_type = _alias_replacer(LEAVE_TYPE_ALIASES)
canonical_org_name = _alias_replacer(ORGANIZATION_ALIASES)


class InvalidCellError(ValueError):
    pass


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_leave_date(value: Any) -> date:
    """Convert an Excel date cell (datetime or serial number) to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise InvalidCellError(str(value))
    if isinstance(value, (int, float)):
        serial = float(value)
    else:
        raw = _text(value)
        if not raw or "/" in raw or "-" in raw:
            raise InvalidCellError(raw)
        try:
            serial = float(raw)
        except ValueError:
            raise InvalidCellError(raw) from None
    try:
        converted = from_excel(serial)
    except (ValueError, OverflowError):
        raise InvalidCellError(_text(value)) from None
    if converted is None:
        raise InvalidCellError(_text(value))
    return converted.date() if isinstance(converted, datetime) else converted


def parse_hours(value: Any) -> float:
    if isinstance(value, bool):
        raise InvalidCellError(str(value))
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(_text(value))
    except ValueError:
        raise InvalidCellError(_text(value)) from None


@dataclass
class ExtractionResult:
    rows: list[LeaveRequestRow] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def parse_row(cells: tuple[Any, ...]) -> LeaveRequestRow:
    """Build a leave request from one worksheet row.

    Raises:
        ValueError: with a user-facing message when a cell is invalid.
    """
    padded = list(cells) + [None] * (7 - len(cells))

    try:
        leave_date = parse_leave_date(padded[1])
    except InvalidCellError as e:
        raise ValueError(
            f"Invalid entry for Leave Date: {e}. Valid Format DD/MM/YYYY (Ex: 01/06/2020)"
        ) from None

    try:
        hours = parse_hours(padded[2])
    except InvalidCellError as e:
        raise ValueError(f"Invalid entry for Leave Hours: {e}") from None

    leave_type = _text(padded[3]) or _text(padded[4])
    return LeaveRequestRow(
        employee_name=_text(padded[0]),
        org_name=canonical_org_name(_text(padded[5])),
        leave_type=canonical_leave_type(leave_type),
        leave_date=leave_date,
        hours=hours,
        description=_text(padded[6]),
    )


def extract_leave_requests(path: Path | str) -> ExtractionResult:
    """Parse every data row of the workbook's active sheet.

    Invalid rows are reported and skipped; an unreadable file yields a
    single error and no rows.
    """
    result = ExtractionResult()
    try:
        workbook = load_workbook(filename=path, read_only=True, data_only=True)
    except (OSError, KeyError, zipfile.BadZipFile, InvalidFileException) as e:
        logger.error("workbook_unreadable", path=str(path), error=str(e))
        result.errors.append(
            "Unable to open the uploaded file. Please confirm the file is in xlsx format."
        )
        return result

    try:
        sheet = workbook.active
        logger.info("reading_sheet", sheet=sheet.title)
        for cells in sheet.iter_rows(min_row=2, values_only=True):
            if not any(_text(c) for c in cells):
                continue
            try:
                result.rows.append(parse_row(cells))
            except ValueError as e:
                logger.warning("invalid_leave_row", error=str(e))
                result.errors.append(str(e))
    finally:
        workbook.close()

    logger.info("leave_requests_extracted", rows=len(result.rows), errors=len(result.errors))
    return result

"""
Excel import and export of VIN records.

Sheets use a fixed column layout so an exported file can be imported back:

    A: ID  B: Code  C: Date Recorded  D: Time Elapsed  E: User Agent  F: IP Address
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO
import logging

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
from openpyxl.styles import Font, PatternFill

from .db import VinRecord
from .exceptions import VinConflictError, VinError, SpreadsheetError
from .store import VinStore
from .validation import is_valid_vin, normalize_vin, to_utc_naive, utcnow

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = ["ID", "Code", "Date Recorded", "Time Elapsed", "User Agent", "IP Address"]
COLUMN_WIDTHS = {"A": 10, "B": 20, "C": 25, "D": 20, "E": 30, "F": 15}
SHEET_NAME = "VINs"

CODE_COLUMN = 1
DATE_COLUMN = 2
USER_AGENT_COLUMN = 4
IP_ADDRESS_COLUMN = 5

DISPLAY_DATE_FORMAT = "%d/%m/%Y %H:%M:%S"
NOT_SPECIFIED = "Not specified"
IMPORT_USER_AGENT = "Import Excel"
IMPORT_IP_ADDRESS = "Import"
MAX_ERROR_MESSAGES = 10


@dataclass
class ImportSummary:
    imported: int = 0
    duplicates: int = 0
    error_count: int = 0
    errors: list[str] = field(default_factory=list)

    def add_error(self, message: str):
        self.error_count += 1
        if len(self.errors) < MAX_ERROR_MESSAGES:
            self.errors.append(message)


def _cell(row, index):
    """Return the cell value at index, or None when the cell is empty."""
    if index >= len(row):
        return None
    value = row[index]
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def parse_native_date(value) -> datetime:
    if isinstance(value, datetime):
        if isinstance(value, pd.Timestamp):
            value = value.to_pydatetime()
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raise ValueError("not a date cell")


def parse_display_date(value) -> datetime:
    if not isinstance(value, str):
        raise ValueError("not a text cell")
    try:
        return datetime.strptime(value.strip(), DISPLAY_DATE_FORMAT)
    except ValueError:
        raise ValueError("does not match DD/MM/YYYY HH:MM:SS") from None


def parse_free_form_date(value) -> datetime:
    try:
        parsed = pd.to_datetime(str(value).strip())
    except (ValueError, OverflowError, TypeError) as e:
        raise ValueError(f"unrecognized date ({e})") from None
    if pd.isna(parsed):
        raise ValueError("unrecognized date")
    return parsed.to_pydatetime()


# tried in order, the first one to succeed wins
DATE_PARSERS = [
    ("native date", parse_native_date),
    ("DD/MM/YYYY HH:MM:SS", parse_display_date),
    ("free-form", parse_free_form_date),
]


def parse_recorded_at(value) -> datetime:
    """
    Parse a "date recorded" cell with each strategy in DATE_PARSERS.

    Raises:
        ValueError: No strategy could parse the value; the message lists every reason.
    """
    reasons = []
    for name, parser in DATE_PARSERS:
        try:
            return to_utc_naive(parser(value))
        except ValueError as e:
            reasons.append(f"{name}: {e}")
    raise ValueError("; ".join(reasons))


def read_rows(content: bytes) -> list[list]:
    """
    Load the first sheet of an xlsx file as raw cell values, header row included.
    """
    try:
        df = pd.read_excel(BytesIO(content), sheet_name=0, header=None, dtype=object, engine="openpyxl")
    except Exception as e:
        logger.warning(f"Unreadable spreadsheet: {e}")
        raise SpreadsheetError(f"Unable to read the Excel file: {e}") from e
    return df.values.tolist()


def import_rows(store: VinStore, rows: list[list]) -> ImportSummary:
    """
    Insert every row after the header, collecting per-row outcomes.

    A failing row never stops the batch. Duplicate codes are counted apart
    from errors.

    Args:
        store (VinStore): Store the rows are inserted into.
        rows (list[list]): Sheet rows, the first one being the header.

    Returns:
        ImportSummary: Imported and duplicate counts plus the first error messages.
    """
    summary = ImportSummary()
    for index, row in enumerate(rows[1:], start=2):
        code = _cell(row, CODE_COLUMN)
        if not isinstance(code, str):
            summary.add_error(f"Row {index}: missing or invalid VIN code")
            continue

        code = normalize_vin(code)
        if not is_valid_vin(code):
            summary.add_error(f"Row {index}: invalid VIN code '{code}'")
            continue

        raw_date = _cell(row, DATE_COLUMN)
        if raw_date is None:
            summary.add_error(f"Row {index}: missing date recorded")
            continue
        try:
            recorded_at = parse_recorded_at(raw_date)
        except ValueError as e:
            summary.add_error(f"Row {index}: invalid date '{raw_date}' ({e})")
            continue

        user_agent = _cell(row, USER_AGENT_COLUMN)
        ip_address = _cell(row, IP_ADDRESS_COLUMN)
        try:
            store.create(
                code,
                recorded_at=recorded_at,
                user_agent=str(user_agent) if user_agent is not None else IMPORT_USER_AGENT,
                ip_address=str(ip_address) if ip_address is not None else IMPORT_IP_ADDRESS,
            )
        except VinConflictError:
            summary.duplicates += 1
        except VinError as e:
            summary.add_error(f"Row {index}: {e.message}")
        else:
            summary.imported += 1

    logger.info(
        f"Import finished: {summary.imported} imported, {summary.duplicates} duplicates, "
        f"{summary.error_count} errors"
    )
    return summary


def time_elapsed(recorded_at: datetime, now: datetime | None = None) -> str:
    """
    Describe how long ago a VIN was recorded, at day granularity.
    """
    now = now or utcnow()
    days = (now - recorded_at).days
    if days <= 0:
        return "today"
    if days == 1:
        return "yesterday"
    if days < 7:
        return f"{days} days ago"
    if days < 30:
        return f"{days // 7} weeks ago"
    if days < 365:
        return f"{days // 30} months ago"
    return f"{days // 365} years ago"


def export_rows(records: list[VinRecord], now: datetime | None = None) -> bytes:
    """
    Write the records to a single-sheet xlsx workbook.

    Returns:
        bytes: The workbook content.
    """
    now = now or utcnow()
    data = [
        {
            "ID": record.id,
            "Code": record.code,
            "Date Recorded": record.date_created.strftime(DISPLAY_DATE_FORMAT),
            "Time Elapsed": time_elapsed(record.date_created, now),
            "User Agent": record.user_agent or NOT_SPECIFIED,
            "IP Address": record.ip_address or NOT_SPECIFIED,
        }
        for record in records
    ]
    df = pd.DataFrame(data, columns=EXPORT_COLUMNS)

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=SHEET_NAME, index=False)
        worksheet = writer.sheets[SHEET_NAME]
        for cell in worksheet[1]:
            cell.font = Font(bold=True)
            cell.fill = PatternFill(fill_type="solid", fgColor="FFE0E0E0")
        for column, width in COLUMN_WIDTHS.items():
            worksheet.column_dimensions[column].width = width
    return buffer.getvalue()


def export_parquet(records: list[VinRecord]) -> bytes:
    """
    Write the records as a parquet table.
    """
    data = [
        {
            "id": record.id,
            "code": record.code,
            "date_recorded": record.date_created,
            "user_agent": record.user_agent,
            "ip_address": record.ip_address,
            "created_at": record.created_at,
        }
        for record in records
    ]
    df = pd.DataFrame(
        data, columns=["id", "code", "date_recorded", "user_agent", "ip_address", "created_at"]
    )

    buffer = BytesIO()
    table = pa.Table.from_pandas(df, preserve_index=False)
    pq.write_table(table, buffer)
    return buffer.getvalue()

"""
Fuel Statement Parser

Parses fuel card statement exports (CSV or Excel) into typed statement rows.
Rows with bad values are rejected one at a time; the rest of the file still parses.
"""

import csv
import logging
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from io import BytesIO, StringIO
from pathlib import Path
from typing import Iterable, Iterator

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .errors import ParseError
from .models import RawStatementRow, RowError

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {".xlsx", ".xlsm"}

FILENAME_PATTERN = re.compile(
    r"Transactions_(\d{2})(\d{2})(\d{4})_(\d{2})(\d{2})", re.IGNORECASE
)


@dataclass
class ParseResult:
    """Result of parsing a fuel statement."""

    rows: list[RawStatementRow] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    column_mapping: dict[str, str] = field(default_factory=dict)
    source_name: str | None = None
    statement_end_date: date | None = None

    @property
    def transaction_count(self) -> int:
        return len(self.rows)

    @property
    def total_cost(self) -> Decimal:
        return sum((r.total_cost for r in self.rows), Decimal("0"))

    @property
    def total_gallons(self) -> Decimal:
        return sum((r.gallons for r in self.rows), Decimal("0"))


def statement_end_date_from_filename(filename: str | None) -> date | None:
    """Read the statement end date from a Transactions_MMDDYYYY_HHMM file name.

    Args:
        filename: Uploaded file name (may include a path)

    Returns:
        Statement end date, or None when the name does not follow the convention
    """
    if not filename:
        return None

    match = FILENAME_PATTERN.search(Path(filename).name)
    if not match:
        return None

    month, day, year = (int(g) for g in match.groups()[:3])
    try:
        return date(year, month, day)
    except ValueError:
        return None


class FuelStatementParser:
    """Parser for fuel card transaction statements."""

    # Header aliases per field, compared case-insensitively
    COLUMN_MAPPINGS = {
        "transaction_id": ["Trans ID", "Transaction ID", "Source Transaction ID", "Trans Id"],
        "transaction_date": ["Transaction Date", "Trans Date", "Date"],
        "transaction_time": ["Transaction Time", "Trans Time", "Time"],
        "vehicle_identifier": [
            "Custom Vehicle/Asset ID", "Vehicle/Asset ID", "Vehicle ID", "Asset ID", "Vehicle",
        ],
        "driver_name": ["Driver Name", "Driver", "Employee Name", "Employee"],
        "driver_first_name": ["Driver First Name", "First Name"],
        "driver_last_name": ["Driver Last Name", "Last Name"],
        "gallons": ["Units", "Gallons", "Quantity"],
        "cost_per_gallon": ["Unit Cost", "Cost Per Gallon", "Price Per Gallon", "PPG"],
        "total_cost": ["Total Fuel Cost", "Total Cost", "Fuel Cost", "Amount"],
        "odometer": ["Current Odometer", "Odometer", "Odometer Reading"],
        "merchant_name": ["Merchant Name", "Merchant", "Site Name"],
    }

    REQUIRED_FIELDS = [
        "transaction_id",
        "transaction_date",
        "vehicle_identifier",
        "gallons",
        "cost_per_gallon",
        "total_cost",
        "odometer",
        "merchant_name",
    ]

    DATE_FORMATS = [
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%dT%H:%M:%S",
        "%m/%d/%Y %H:%M:%S",
        "%m/%d/%Y %H:%M",
        "%Y-%m-%d",
        "%m/%d/%Y",
        "%m/%d/%y",
        "%m-%d-%Y",
        "%d-%b-%Y",
        "%b %d, %Y",
    ]

    TIME_FORMATS = [
        "%H:%M:%S",
        "%H:%M",
        "%I:%M:%S %p",
        "%I:%M %p",
    ]

    def __init__(self, encoding: str = "utf-8", delimiter: str = ","):
        """Initialize the parser.

        Args:
            encoding: Text encoding of CSV uploads
            delimiter: CSV delimiter
        """
        self.encoding = encoding
        self.delimiter = delimiter

    def parse(self, data: bytes, filename: str | None = None) -> ParseResult:
        """Parse an uploaded statement, choosing CSV or Excel by file name.

        Args:
            data: Raw file bytes
            filename: Original file name, used for format and end date hints

        Returns:
            ParseResult

        Raises:
            ParseError: If the file is unusable as a whole
        """
        if filename and Path(filename).suffix.lower() in EXCEL_SUFFIXES:
            result = self.parse_workbook(BytesIO(data))
        else:
            result = self.parse_bytes(data)

        result.source_name = filename
        result.statement_end_date = statement_end_date_from_filename(filename)
        return result

    def parse_file(self, file_path: Path | str) -> ParseResult:
        """Parse a statement file from disk.

        Args:
            file_path: Path to the CSV or Excel file

        Returns:
            ParseResult
        """
        file_path = Path(file_path)
        return self.parse(file_path.read_bytes(), filename=file_path.name)

    def parse_bytes(self, data: bytes) -> ParseResult:
        """Decode and parse CSV bytes."""
        try:
            content = data.decode(self.encoding)
        except UnicodeDecodeError as e:
            raise ParseError(f"Statement is not valid {self.encoding}: {e}")
        return self.parse_content(content)

    def parse_content(self, content: str) -> ParseResult:
        """Parse CSV content string.

        Args:
            content: CSV content as string

        Returns:
            ParseResult

        Raises:
            ParseError: Malformed header, missing required column, or no valid rows
        """
        content = self._preprocess_content(content)
        if not content.strip():
            raise ParseError("Statement file is empty")

        reader = csv.reader(StringIO(content), delimiter=self.delimiter)
        try:
            headers = next(reader)
        except csv.Error as e:
            raise ParseError(f"Malformed header row: {e}")

        return self._parse_records(headers, self._iter_csv_records(reader))

    def parse_workbook(self, source: BytesIO | Path | str) -> ParseResult:
        """Parse the first worksheet of an Excel statement.

        Args:
            source: Workbook path or file-like object

        Returns:
            ParseResult
        """
        try:
            workbook = load_workbook(source, read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
            raise ParseError(f"Cannot open workbook: {e}")

        try:
            sheet = workbook.active
            rows = sheet.iter_rows(values_only=True)
            header_row = next(rows, None)
            if not header_row:
                raise ParseError("Statement file is empty")

            headers = [self._cell_to_text(c) for c in header_row]
            records = (
                (line_number, [self._cell_to_text(c) for c in values])
                for line_number, values in enumerate(rows, start=2)
            )
            return self._parse_records(headers, records)
        finally:
            workbook.close()

    def _preprocess_content(self, content: str) -> str:
        """Strip BOM and normalize line endings."""
        if content.startswith('\ufeff'):
            content = content[1:]

        return content.replace('\r\n', '\n').replace('\r', '\n')

    def _iter_csv_records(self, reader) -> Iterator[tuple[int, list[str]]]:
        while True:
            try:
                values = next(reader)
            except StopIteration:
                return
            except csv.Error as e:
                raise ParseError(f"Malformed CSV near line {reader.line_num}: {e}")
            yield reader.line_num, values

    def _cell_to_text(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, datetime):
            return value.strftime("%Y-%m-%d %H:%M:%S")
        if isinstance(value, date):
            return value.strftime("%Y-%m-%d")
        if isinstance(value, time):
            return value.strftime("%H:%M:%S")
        return str(value)

    def _resolve_columns(self, headers: list[str]) -> dict[str, int]:
        """Map field names to column positions.

        Raises:
            ParseError: If the header is blank or required columns are missing
        """
        normalized = [h.strip().lower() for h in headers]
        if not any(normalized):
            raise ParseError("Malformed header row: no column names")

        mapping: dict[str, int] = {}
        for field_name, aliases in self.COLUMN_MAPPINGS.items():
            for alias in aliases:
                if alias.lower() in normalized:
                    mapping[field_name] = normalized.index(alias.lower())
                    break

        missing = [f for f in self.REQUIRED_FIELDS if f not in mapping]
        if not any(f in mapping for f in ("driver_name", "driver_first_name", "driver_last_name")):
            missing.append("driver_name")

        if missing:
            raise ParseError(f"Missing required columns: {', '.join(missing)}")

        return mapping

    def _parse_records(
        self,
        headers: list[str],
        records: Iterable[tuple[int, list[str]]]
    ) -> ParseResult:
        mapping = self._resolve_columns(headers)
        result = ParseResult(
            column_mapping={name: headers[idx].strip() for name, idx in mapping.items()}
        )
        seen_data_row = False

        for line_number, values in records:
            if not any(v and v.strip() for v in values):
                continue
            seen_data_row = True

            row = {
                name: (values[idx].strip() if idx < len(values) and values[idx] else "")
                for name, idx in mapping.items()
            }
            try:
                result.rows.append(self._parse_row(row, line_number))
            except ValueError as e:
                logger.warning(f"Rejected statement line {line_number}: {e}")
                result.errors.append(RowError(line_number=line_number, message=str(e)))

        if not seen_data_row:
            raise ParseError("Statement contains no transaction rows")

        if not result.rows:
            raise ParseError(
                f"No valid transactions found ({len(result.errors)} rows rejected)",
                row_errors=result.errors,
            )

        logger.info(
            f"Parsed {result.transaction_count} statement rows, rejected {len(result.errors)}"
        )
        return result

    def _parse_row(self, row: dict[str, str], line_number: int) -> RawStatementRow:
        """Parse a single statement row.

        Args:
            row: Field name -> raw cell text
            line_number: 1-based source line

        Returns:
            RawStatementRow

        Raises:
            ValueError: If a required value is missing or unparseable
        """
        source_id = row.get("transaction_id", "")
        if not source_id:
            raise ValueError("Missing transaction id")

        date_str = row.get("transaction_date", "")
        if not date_str:
            raise ValueError("Missing transaction date")

        transaction_date = self._parse_date(date_str)
        time_str = row.get("transaction_time", "")
        if time_str:
            transaction_date = datetime.combine(
                transaction_date.date(), self._parse_time(time_str)
            )

        employee_name = row.get("driver_name", "")
        if not employee_name:
            employee_name = " ".join(
                p for p in (row.get("driver_first_name", ""), row.get("driver_last_name", "")) if p
            )

        return RawStatementRow(
            source_transaction_id=source_id,
            transaction_date=transaction_date,
            vehicle_identifier=row.get("vehicle_identifier", ""),
            employee_name=employee_name,
            gallons=self._parse_amount(row.get("gallons", ""), "gallons"),
            cost_per_gallon=self._parse_amount(row.get("cost_per_gallon", ""), "cost per gallon"),
            total_cost=self._parse_amount(row.get("total_cost", ""), "total cost"),
            odometer=self._parse_odometer(row.get("odometer", "")),
            merchant_name=row.get("merchant_name", ""),
            line_number=line_number,
        )

    def _parse_date(self, date_str: str) -> datetime:
        """Parse a date string using multiple format patterns.

        Raises:
            ValueError: If date cannot be parsed
        """
        date_str = date_str.strip()

        for fmt in self.DATE_FORMATS:
            try:
                return datetime.strptime(date_str, fmt)
            except ValueError:
                continue

        raise ValueError(f"Cannot parse date: {date_str}")

    def _parse_time(self, time_str: str) -> time:
        time_str = time_str.strip()

        for fmt in self.TIME_FORMATS:
            try:
                return datetime.strptime(time_str, fmt).time()
            except ValueError:
                continue

        raise ValueError(f"Cannot parse time: {time_str}")

    def _parse_amount(self, amount_str: str, label: str) -> Decimal:
        """Parse a numeric cell to Decimal.

        Args:
            amount_str: Cell text (may include currency symbols, commas)
            label: Field name for error messages

        Raises:
            ValueError: If the value is empty or not a number
        """
        if not amount_str or not amount_str.strip():
            raise ValueError(f"Missing {label}")

        cleaned = re.sub(r'[$\s]', '', amount_str)

        is_negative = False
        if cleaned.startswith('(') and cleaned.endswith(')'):
            cleaned = cleaned[1:-1]
            is_negative = True
        elif cleaned.startswith('-'):
            cleaned = cleaned[1:]
            is_negative = True

        cleaned = cleaned.replace(',', '')

        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            raise ValueError(f"Cannot parse {label}: {amount_str}")

        if not amount.is_finite():
            raise ValueError(f"Cannot parse {label}: {amount_str}")

        return -amount if is_negative else amount

    def _parse_odometer(self, odometer_str: str) -> int | None:
        """Parse an odometer reading; blank means no reading."""
        if not odometer_str or not odometer_str.strip():
            return None

        reading = self._parse_amount(odometer_str, "odometer")
        if reading < 0:
            raise ValueError(f"Negative odometer reading: {odometer_str}")

        return int(reading)

"""
Spreadsheet to SQLite importer

Reads the weekly on-duty planning (first sheet of an .xlsx workbook),
validates each row and replaces the pharmacy dataset with the valid ones.
"""

import argparse
import logging
import sqlite3
import zipfile
from datetime import date, datetime
from io import BytesIO
from typing import Any, Dict, Iterable, List, Mapping, Optional

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from config import DB_FILE
from database import init_db
from storage import ImportItem, PharmacyRecord, PharmacyRepository, ScheduleRecord

logger = logging.getLogger(__name__)

# Spreadsheet column -> record field
PHARMACY_COLUMNS = {
    "nom": "name",
    "localisation": "location",
    "telephone": "phone",
    "whatsapp": "whatsapp",
}
SCHEDULE_COLUMNS = {
    "dateDebut": "start_date",
    "dateFin": "end_date",
}
OPTIONAL_COLUMNS = {
    "latitude": "latitude",
    "longitude": "longitude",
}
REQUIRED_COLUMNS = list(PHARMACY_COLUMNS) + list(SCHEDULE_COLUMNS)

# SyntaxError covers XML parse errors (ElementTree and lxml)
WORKBOOK_ERRORS = (
    InvalidFileException,
    zipfile.BadZipFile,
    SyntaxError,
    IndexError,
    KeyError,
    OSError,
    ValueError,
)


class InvalidRowError(ValueError):
    """A spreadsheet row that cannot become a pharmacy + schedule pair."""


class EmptyDatasetError(ValueError):
    """No row of the uploaded sheet survived validation."""


class WorkbookReadError(ValueError):
    """The uploaded file is not a readable workbook."""


def _coerce_text(value: Any) -> Optional[str]:
    """Turn a spreadsheet cell into a trimmed string, None when blank."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidRowError(f"Unexpected boolean cell: {value!r}")
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        # Phone numbers typed in Excel come back as 612345678.0
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, str):
        return value.strip() or None
    raise InvalidRowError(f"Unsupported cell type: {type(value).__name__}")


def _coerce_date(column: str, value: Optional[str]) -> str:
    try:
        return date.fromisoformat(value).isoformat()
    except (TypeError, ValueError):
        raise InvalidRowError(f"{column} is not a YYYY-MM-DD date: {value!r}")


def validate_row(row: Mapping[str, Any]) -> ImportItem:
    """Validate one raw spreadsheet row.

    Raises InvalidRowError when a required column is missing or blank, a
    cell cannot be read as text, or the duty dates are not an ISO range.
    """
    values: Dict[str, Optional[str]] = {}
    for column in REQUIRED_COLUMNS + list(OPTIONAL_COLUMNS):
        values[column] = _coerce_text(row.get(column))

    missing = [column for column in REQUIRED_COLUMNS if not values[column]]
    if missing:
        raise InvalidRowError(f"Missing required columns: {', '.join(missing)}")

    start_date = _coerce_date("dateDebut", values["dateDebut"])
    end_date = _coerce_date("dateFin", values["dateFin"])
    if start_date > end_date:
        raise InvalidRowError(f"dateDebut {start_date} is after dateFin {end_date}")

    pharmacy = PharmacyRecord(
        **{field: values[column] for column, field in PHARMACY_COLUMNS.items()},
        **{field: values[column] for column, field in OPTIONAL_COLUMNS.items()},
    )
    return ImportItem(pharmacy=pharmacy, schedule=ScheduleRecord(start_date, end_date))


def validate_rows(rows: Iterable[Mapping[str, Any]]) -> List[ImportItem]:
    """Validate rows in order, skipping the invalid ones."""
    items = []
    for index, row in enumerate(rows, start=1):
        try:
            items.append(validate_row(row))
        except InvalidRowError as e:
            logger.warning(f"Skipping invalid row {index}: {e}")
    return items


def read_workbook(content: bytes) -> List[Dict[str, Any]]:
    """Read the first sheet of an .xlsx file into header-keyed dicts."""
    try:
        wb = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except WORKBOOK_ERRORS as e:
        raise WorkbookReadError(f"Unable to read workbook: {e}") from e

    # read_only sheets are parsed lazily, a corrupt sheet only fails here
    try:
        ws = wb.worksheets[0]
        rows = list(ws.iter_rows(values_only=True))
    except WORKBOOK_ERRORS as e:
        raise WorkbookReadError(f"Unable to read first sheet: {e}") from e
    finally:
        wb.close()

    if not rows:
        return []

    headers = [str(h).strip() if h is not None else None for h in rows[0]]
    records = []
    for values in rows[1:]:
        if all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
            continue
        records.append(
            {header: value for header, value in zip(headers, values) if header}
        )
    return records


def import_dataset(rows: Iterable[Mapping[str, Any]], repository: PharmacyRepository) -> int:
    """Validate rows and replace the stored dataset with the valid ones.

    Returns the number of rows imported. Raises EmptyDatasetError, without
    touching the database, when no row is valid.
    """
    rows = list(rows)
    items = validate_rows(rows)
    if not items:
        raise EmptyDatasetError("No valid data found in the uploaded file")

    logger.info(f"Importing {len(items)} valid rows out of {len(rows)}")
    repository.replace_all(items)
    return len(items)


def convert_xlsx_to_sqlite(xlsx_file: str, db_file: str = DB_FILE) -> bool:
    """Import a planning workbook from disk into the SQLite database."""
    try:
        with open(xlsx_file, "rb") as f:
            rows = read_workbook(f.read())

        init_db(db_file)
        print(f"🔄 Importing {xlsx_file} into {db_file}...")
        imported = import_dataset(rows, PharmacyRepository(db_file))

        counts = PharmacyRepository(db_file).table_counts()
        print("✅ Import completed!")
        print(f"📊 Rows read: {len(rows)}, rows imported: {imported}")
        print(f"💾 Pharmacies: {counts['pharmacies']}, duty weeks: {counts['weekly_schedules']}")
        return True

    except FileNotFoundError:
        print(f"❌ Error: {xlsx_file} not found!")
        return False
    except (WorkbookReadError, EmptyDatasetError) as e:
        print(f"❌ Error: {e}")
        return False
    except sqlite3.Error as e:
        print(f"❌ Database error: {e}")
        return False


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the importer."""
    parser = argparse.ArgumentParser(
        description="Import the weekly on-duty planning (.xlsx) into the SQLite database"
    )
    parser.add_argument("xlsx_file", help="Planning workbook")
    parser.add_argument(
        "--db-file",
        default=DB_FILE,
        help=f"SQLite database file (default: {DB_FILE})",
    )

    args = parser.parse_args(argv)
    return 0 if convert_xlsx_to_sqlite(args.xlsx_file, args.db_file) else 1


if __name__ == "__main__":
    raise SystemExit(main())
